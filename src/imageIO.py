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

# Image decode/encode collaborators of the pipeline.

import logging

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


def decode(filename):
    """Load an image file as 8-bit luminance. Returns (width, height, grid)."""
    with Image.open(filename) as image:
        grid = np.array(image.convert('L'), dtype=np.uint8)
    height, width = grid.shape
    logger.debug('Decoded %s (%dx%d)', filename, width, height)
    return width, height, grid


def toIntensity(grid):
    """
    Convert a grid to 8-bit intensity for encoding.

    Multi-channel grids (tensors, flow vectors) are reduced to their
    magnitude; non 8-bit grids are rescaled linearly to 0..255.
    """
    grid = np.asarray(grid)
    if grid.ndim == 3:
        grid = np.sqrt(np.sum(grid.astype(np.float64) ** 2, axis=2))
    if grid.dtype == np.uint8:
        return grid
    grid = grid.astype(np.float64)
    low = grid.min()
    high = grid.max()
    if high - low <= 0:
        return np.zeros(grid.shape, dtype=np.uint8)
    return np.round((grid - low) * 255.0 / (high - low)).astype(np.uint8)


def encode(grid, filename):
    Image.fromarray(toIntensity(grid)).save(filename)
    logger.debug('Encoded %s', filename)
