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

from DeviceImage import FLOW, ResidencyConfig
from OpticalFlowErrors import DimensionMismatch
from Pyramid import FlowPyramid

logger = logging.getLogger(__name__)

FLT_EPSILON = 1.192092896e-07


class InitialLevel(object):
    """Coarsest level, refined from the zero vector field."""
    kernelId = 'solve_flow_initial'

    def inputs(self):
        return []

    def waitHandles(self):
        return []

    def __repr__(self):
        return 'InitialLevel()'


class RefinementLevel(object):
    """Level refined from the flow computed at the next coarser level."""
    kernelId = 'solve_flow_refine'

    def __init__(self, coarserFlow):
        self.coarserFlow = coarserFlow

    def inputs(self):
        return [self.coarserFlow]

    def waitHandles(self):
        return [self.coarserFlow.producer]

    def __repr__(self):
        return f'RefinementLevel({self.coarserFlow.name!r})'


class FlowEstimator(object):
    """
    Coarse-to-fine Lucas-Kanade flow.

    Levels are dispatched from the coarsest to the finest one, each binding
    the coarser result as its initial guess. The host never blocks, device
    ordering comes from the wait-lists only. Every pixel does one direct
    solve of its 2x2 normal equations per level.
    """
    def __init__(self, context, graph, program, determinantEpsilon=FLT_EPSILON, residency=None, localShape=None):
        self.context = context
        self.graph = graph
        self.program = program
        self.determinantEpsilon = determinantEpsilon
        self.residency = residency or ResidencyConfig()
        self.localShape = localShape

    def estimate(self, first, second, gradientX, gradientY, tensor, name='Flow'):
        pyramids = (first, second, gradientX, gradientY, tensor)
        if len({len(p) for p in pyramids}) != 1:
            raise DimensionMismatch('Flow inputs have different level counts: '
                                    + ', '.join(f'{p.name}={len(p)}' for p in pyramids))
        if len({tuple(p.dimensions()) for p in pyramids}) != 1:
            raise DimensionMismatch('Flow input pyramids differ in level dimensions')

        levels = len(first)
        images = [None] * levels
        variant = InitialLevel()
        for i in range(levels - 1, -1, -1):
            images[i] = self._dispatchLevel(i, variant, first[i], second[i], gradientX[i], gradientY[i],
                                            tensor[i], tensor.windowHalfWidth, tensor.shift, name)
            variant = RefinementLevel(images[i])
        logger.debug('Dispatched %d flow levels', levels)
        return FlowPyramid(name, images)

    def _dispatchLevel(self, level, variant, im1, im2, gx, gy, tensor, radius, shift, name):
        flow = self.context.allocateImage(im1.width, im1.height, FLOW, self.residency.output,
                                          name=f'{name} Level {level}')
        # im2 is not an ancestor of the tensor, its edge is declared explicitly
        waitHandles = [tensor.producer, im2.producer] + variant.waitHandles()
        self.graph.enqueue(self.program.kernel(variant.kernelId),
                           [im1, im2, gx, gy, tensor] + variant.inputs(), [flow],
                           scalarParams=(radius, shift, float(self.determinantEpsilon)),
                           waitHandles=waitHandles, localShape=self.localShape,
                           name=f'{name} Level {level}')
        return flow
