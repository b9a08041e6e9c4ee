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

import logging

from DeviceImage import TENSOR, ResidencyConfig
from OpticalFlowErrors import DimensionMismatch
from Pyramid import StructureTensorPyramid
from opticalFlowKernels_Numba import tensorShift

logger = logging.getLogger(__name__)


class StructureTensorBuilder(object):
    """
    Combines the x and y gradient pyramids into per-pixel structure tensors
    (gx^2, gx*gy, gx*gy, gy^2) summed over a (2r+1) x (2r+1) window.
    """
    def __init__(self, context, graph, program, windowHalfWidth=2, residency=None, localShape=None):
        if windowHalfWidth < 0:
            raise ValueError(f'Window half width must be non-negative, got {windowHalfWidth}')
        self.context = context
        self.graph = graph
        self.program = program
        self.windowHalfWidth = windowHalfWidth
        self.shift = tensorShift(windowHalfWidth)
        self.residency = residency or ResidencyConfig()
        self.localShape = localShape

    def build(self, gradientX, gradientY, name='StructureTensor'):
        if len(gradientX) != len(gradientY):
            raise DimensionMismatch(f'Gradient pyramids have {len(gradientX)} and {len(gradientY)} levels')
        if gradientX.dimensions() != gradientY.dimensions():
            raise DimensionMismatch('Gradient pyramid levels differ in size',
                                    gradientX.dimensions(), gradientY.dimensions())
        logger.debug('Building %s over %d levels, window %d, shift %d',
                     name, len(gradientX), 2 * self.windowHalfWidth + 1, self.shift)

        images = []
        for i, (gx, gy) in enumerate(zip(gradientX, gradientY)):
            tensor = self.context.allocateImage(gx.width, gx.height, TENSOR, self.residency.output,
                                                name=f'{name} Level {i}')
            self.graph.enqueue(self.program.kernel('assemble_tensor'), [gx, gy], [tensor],
                               scalarParams=(self.windowHalfWidth, self.shift),
                               waitHandles=[gx.producer, gy.producer],
                               localShape=self.localShape, name=f'{name} Level {i}')
            images.append(tensor)

        return StructureTensorPyramid(name, images, self.shift, self.windowHalfWidth)
