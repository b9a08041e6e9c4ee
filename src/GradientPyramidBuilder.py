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

from DeviceImage import DERIVATIVE, ResidencyConfig
from Pyramid import GradientPyramid
from opticalFlowKernels_Numba import DERIVATIVE_TAPS, SMOOTHING_TAPS

logger = logging.getLogger(__name__)

AXIS_X = 'x'
AXIS_Y = 'y'

# (row pass taps, column pass taps) of the separable Scharr operator
AXIS_TAPS = {
    AXIS_X: (DERIVATIVE_TAPS, SMOOTHING_TAPS),
    AXIS_Y: (SMOOTHING_TAPS, DERIVATIVE_TAPS),
}


class GradientPyramidBuilder(object):
    """
    Derives the x or y derivative of every level of a base pyramid.

    Each level is a row pass into a 16-bit intermediate followed by a column
    pass. Levels only wait on their own base image, so they run in parallel.
    """
    def __init__(self, context, graph, program, residency=None, localShape=None):
        self.context = context
        self.graph = graph
        self.program = program
        self.residency = residency or ResidencyConfig()
        self.localShape = localShape

    def build(self, base, axis):
        if axis not in AXIS_TAPS:
            raise ValueError(f"Unknown gradient axis '{axis}', expected '{AXIS_X}' or '{AXIS_Y}'")
        rowTaps, columnTaps = AXIS_TAPS[axis]
        name = f'Gradient{axis.upper()} {base.name}'
        logger.debug('Building %s over %d levels', name, len(base))

        images = []
        for i, baseImage in enumerate(base):
            rowPass = self.context.allocateImage(baseImage.width, baseImage.height, DERIVATIVE,
                                                 self.residency.intermediate, name=f'{name} Level {i} Row')
            self.graph.enqueue(self.program.kernel('derivative_row_pass'), [baseImage], [rowPass],
                               scalarParams=rowTaps, waitHandles=[baseImage.producer],
                               localShape=self.localShape, name=f'{name} Row Level {i}')

            gradient = self.context.allocateImage(baseImage.width, baseImage.height, DERIVATIVE,
                                                  self.residency.output, name=f'{name} Level {i}')
            self.graph.enqueue(self.program.kernel('derivative_column_pass'), [rowPass], [gradient],
                               scalarParams=columnTaps, waitHandles=[rowPass.producer],
                               localShape=self.localShape, name=f'{name} Column Level {i}')
            images.append(gradient)

        return GradientPyramid(name, images, axis)
