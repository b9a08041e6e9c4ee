"""
MIT LicenseCopyright (c) [2021-2024] [Luís Mendes, luis <dot> mendes _at_ tecnico.ulisboa.pt]

Permission is hereby granted, free of charge, to any person obtaining a copy
of this software and associated documentation files (the "Software"), to deal
in the Software without restriction, including without limitation the rights
to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
copies of the Software, and to permit persons to whom the Software is furnished
to do so, subject to the following conditions:The above copyright notice and
this permission notice shall be included in all copies or substantial portions
of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
SOFTWARE.
"""

# Device program of the pyramidal Lucas-Kanade pipeline.
#
# Every kernel is called by the execution graph as
# kernel(*inputs, *outputs, x0, y0, x1, y1, *scalarParams) and writes the
# outputs inside the [x0, x1) x [y0, y1) batch of its iteration domain.
# Borders are handled by clamping sample coordinates to the image.

import logging

import numpy as np
from numba import njit
from numba.core.errors import NumbaError

from OpticalFlowErrors import ConfigurationError

logger = logging.getLogger(__name__)

# Binomial smoothing used by the down-filter, normalised by 16
DOWNFILTER_WEIGHTS = np.array([1, 4, 6, 4, 1], dtype=np.int64)

# Scharr operator, separable as a [-1 0 1] derivative and a [3 10 3] smoothing
DERIVATIVE_TAPS = (-1, 0, 1)
SMOOTHING_TAPS = (3, 10, 3)
# The derivative computed with these taps is 32 times the unit derivative
GRADIENT_SCALE = 32.0
MAX_GRADIENT = 2 * 255 * 16


@njit(nogil=True)
def upload_image(src, dst, x0, y0, x1, y1):
    for y in range(y0, y1):
        for x in range(x0, x1):
            dst[y, x] = src[y, x]


@njit(nogil=True)
def downfilter_x(src, dst, x0, y0, x1, y1):
    """Horizontal binomial smoothing, same resolution as the source."""
    width = src.shape[1]
    for y in range(y0, y1):
        for x in range(x0, x1):
            acc = 0
            for k in range(5):
                xx = min(max(x + k - 2, 0), width - 1)
                acc += DOWNFILTER_WEIGHTS[k] * np.int64(src[y, xx])
            dst[y, x] = (acc + 8) >> 4


@njit(nogil=True)
def downfilter_y(src, dst, x0, y0, x1, y1):
    """Vertical binomial smoothing and decimation by two along both axes."""
    height = src.shape[0]
    for y in range(y0, y1):
        for x in range(x0, x1):
            sx = 2 * x
            acc = 0
            for k in range(5):
                yy = min(max(2 * y + k - 2, 0), height - 1)
                acc += DOWNFILTER_WEIGHTS[k] * np.int64(src[yy, sx])
            dst[y, x] = (acc + 8) >> 4


@njit(nogil=True)
def derivative_row_pass(src, dst, x0, y0, x1, y1, k0, k1, k2):
    """1D convolution along x with taps (k0, k1, k2)."""
    width = src.shape[1]
    for y in range(y0, y1):
        for x in range(x0, x1):
            left = np.int64(src[y, max(x - 1, 0)])
            center = np.int64(src[y, x])
            right = np.int64(src[y, min(x + 1, width - 1)])
            dst[y, x] = k0 * left + k1 * center + k2 * right


@njit(nogil=True)
def derivative_column_pass(src, dst, x0, y0, x1, y1, k0, k1, k2):
    """1D convolution along y with taps (k0, k1, k2)."""
    height = src.shape[0]
    for y in range(y0, y1):
        for x in range(x0, x1):
            top = np.int64(src[max(y - 1, 0), x])
            center = np.int64(src[y, x])
            bottom = np.int64(src[min(y + 1, height - 1), x])
            dst[y, x] = k0 * top + k1 * center + k2 * bottom


@njit(nogil=True)
def assemble_tensor(gx, gy, dst, x0, y0, x1, y1, radius, shift):
    """Window sums of the gradient products (the Lucas-Kanade normal matrix)."""
    height, width = gx.shape
    for y in range(y0, y1):
        for x in range(x0, x1):
            sxx = 0
            sxy = 0
            syy = 0
            for dy in range(-radius, radius + 1):
                yy = min(max(y + dy, 0), height - 1)
                for dx in range(-radius, radius + 1):
                    xx = min(max(x + dx, 0), width - 1)
                    a = np.int64(gx[yy, xx])
                    b = np.int64(gy[yy, xx])
                    sxx += a * a
                    sxy += a * b
                    syy += b * b
            dst[y, x, 0] = sxx >> shift
            dst[y, x, 1] = sxy >> shift
            dst[y, x, 2] = sxy >> shift
            dst[y, x, 3] = syy >> shift


@njit(nogil=True, fastmath=True)
def _bilinear_sample(img, fx, fy):
    """Bilinear interpolation with clamp-to-edge addressing."""
    height, width = img.shape
    fx = min(max(fx, 0.0), width - 1.0)
    fy = min(max(fy, 0.0), height - 1.0)
    ix = int(np.floor(fx))
    iy = int(np.floor(fy))
    ix1 = min(ix + 1, width - 1)
    iy1 = min(iy + 1, height - 1)
    wx = fx - ix
    wy = fy - iy
    v00 = np.float64(img[iy, ix])
    v01 = np.float64(img[iy, ix1])
    v10 = np.float64(img[iy1, ix])
    v11 = np.float64(img[iy1, ix1])
    return (1 - wx) * (1 - wy) * v00 + wx * (1 - wy) * v01 + (1 - wx) * wy * v10 + wx * wy * v11


@njit(nogil=True, fastmath=True)
def _solve_pixel(im1, im2, gx, gy, tensor, x, y, guessX, guessY, radius, shift, detEpsilon):
    """One direct solve of the 2x2 normal equations at (x, y)."""
    height, width = im1.shape
    gxx = np.float64(tensor[y, x, 0])
    gxy = np.float64(tensor[y, x, 1])
    gyy = np.float64(tensor[y, x, 3])
    det = gxx * gyy - gxy * gxy
    if det <= detEpsilon:
        return guessX, guessY

    # Mismatch vector b = sum(grad * It), scaled like the tensor
    b1 = 0.0
    b2 = 0.0
    for dy in range(-radius, radius + 1):
        yy = min(max(y + dy, 0), height - 1)
        for dx in range(-radius, radius + 1):
            xx = min(max(x + dx, 0), width - 1)
            it = _bilinear_sample(im2, xx + guessX, yy + guessY) - np.float64(im1[yy, xx])
            b1 += np.float64(gx[yy, xx]) * it
            b2 += np.float64(gy[yy, xx]) * it
    scale = np.float64(1 << shift)
    b1 /= scale
    b2 /= scale

    deltaX = -GRADIENT_SCALE * (gyy * b1 - gxy * b2) / det
    deltaY = -GRADIENT_SCALE * (gxx * b2 - gxy * b1) / det
    return guessX + deltaX, guessY + deltaY


@njit(nogil=True)
def solve_flow_initial(im1, im2, gx, gy, tensor, dst, x0, y0, x1, y1, radius, shift, detEpsilon):
    """Coarsest level: the initial guess is the zero vector field."""
    for y in range(y0, y1):
        for x in range(x0, x1):
            u, v = _solve_pixel(im1, im2, gx, gy, tensor, x, y, 0.0, 0.0, radius, shift, detEpsilon)
            dst[y, x, 0] = u
            dst[y, x, 1] = v


@njit(nogil=True)
def solve_flow_refine(im1, im2, gx, gy, tensor, coarser, dst, x0, y0, x1, y1, radius, shift, detEpsilon):
    """Finer level: the initial guess is the upscaled flow of the coarser level."""
    coarseHeight = coarser.shape[0]
    coarseWidth = coarser.shape[1]
    for y in range(y0, y1):
        cy = min(y // 2, coarseHeight - 1)
        for x in range(x0, x1):
            cx = min(x // 2, coarseWidth - 1)
            guessX = 2.0 * np.float64(coarser[cy, cx, 0])
            guessY = 2.0 * np.float64(coarser[cy, cx, 1])
            u, v = _solve_pixel(im1, im2, gx, gy, tensor, x, y, guessX, guessY, radius, shift, detEpsilon)
            dst[y, x, 0] = u
            dst[y, x, 1] = v


_REGION = 'int64, int64, int64, int64'

KERNELS = {
    'upload_image': (upload_image, [
        f'void(uint8[:, :], uint8[:, :], {_REGION})']),
    'downfilter_x': (downfilter_x, [
        f'void(uint8[:, :], uint8[:, :], {_REGION})']),
    'downfilter_y': (downfilter_y, [
        f'void(uint8[:, :], uint8[:, :], {_REGION})']),
    'derivative_row_pass': (derivative_row_pass, [
        f'void(uint8[:, :], int16[:, :], {_REGION}, int64, int64, int64)']),
    'derivative_column_pass': (derivative_column_pass, [
        f'void(int16[:, :], int16[:, :], {_REGION}, int64, int64, int64)']),
    'assemble_tensor': (assemble_tensor, [
        f'void(int16[:, :], int16[:, :], int32[:, :, :], {_REGION}, int64, int64)']),
    'solve_flow_initial': (solve_flow_initial, [
        f'void(uint8[:, :], uint8[:, :], int16[:, :], int16[:, :], int32[:, :, :], float32[:, :, :], '
        f'{_REGION}, int64, int64, float64)']),
    'solve_flow_refine': (solve_flow_refine, [
        f'void(uint8[:, :], uint8[:, :], int16[:, :], int16[:, :], int32[:, :, :], float32[:, :, :], '
        f'float32[:, :, :], {_REGION}, int64, int64, float64)']),
}


def tensorShift(radius):
    """Smallest right shift keeping a (2r+1)^2 window sum of gradient products in int32."""
    worstCase = (2 * radius + 1) ** 2 * MAX_GRADIENT * MAX_GRADIENT
    shift = 0
    while (worstCase >> shift) > np.iinfo(np.int32).max:
        shift += 1
    return shift


class Program(object):
    """
    Compiled kernels of the pipeline.

    kernels maps a kernel id to (numba dispatcher, signatures) and is compiled
    eagerly by build(). overrides maps a kernel id to any callable with the
    same calling convention, it replaces the compiled kernel without being
    compiled itself.
    """
    def __init__(self, kernels=None, overrides=None):
        self.kernels = dict(KERNELS if kernels is None else kernels)
        self.overrides = dict(overrides or {})
        self.built = False

    def build(self):
        if self.built:
            return self
        logger.info('Building device program (%d kernels) for CPU with Numba acceleration', len(self.kernels))
        for kernelId, (dispatcher, signatures) in self.kernels.items():
            if kernelId in self.overrides:
                continue
            for signature in signatures:
                try:
                    dispatcher.compile(signature)
                except NumbaError as e:
                    logger.error("Build error in kernel '%s'", kernelId)
                    raise ConfigurationError(f"Failed to build kernel '{kernelId}'", buildLog=str(e)) from e
        self.built = True
        return self

    def kernel(self, kernelId):
        if kernelId in self.overrides:
            return self.overrides[kernelId]
        if kernelId not in self.kernels:
            raise KeyError(f"Kernel '{kernelId}' is not part of the device program")
        return self.kernels[kernelId][0]
