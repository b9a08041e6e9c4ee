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
import os

import numpy as np

from DeviceImage import DeviceContext, ResidencyConfig
from ExecutionGraph import ExecutionGraph
from FlowEstimator import FlowEstimator, FLT_EPSILON
from GradientPyramidBuilder import GradientPyramidBuilder, AXIS_X, AXIS_Y
from OpticalFlowErrors import DimensionMismatch
from ProfileRecorder import ProfileRecorder, TimedEvent
from Pyramid import levelDimensions
from PyramidBuilder import PyramidBuilder
from StructureTensorBuilder import StructureTensorBuilder
from opticalFlowKernels_Numba import Program

logger = logging.getLogger(__name__)


class PipelineConfig(object):
    def __init__(self, pyramidLevels=3, windowHalfWidth=2, maxWorkers=None, localShape=None,
                 memoryLimit=None, determinantEpsilon=FLT_EPSILON, profiling=True, residency=None):
        """
        Args:
            pyramidLevels: Number of pyramid levels (L >= 1)
            windowHalfWidth: Half width r of the (2r+1) x (2r+1) Lucas-Kanade window
            maxWorkers: Number of device worker threads, defaults to the CPU count
            localShape: Optional (width, height) batch shape of every kernel launch
            memoryLimit: Optional device memory capacity in bytes
            determinantEpsilon: Tensors with a determinant below this keep their initial guess
            profiling: Track per-operation latencies
            residency: ResidencyConfig of input, intermediate and output images
        """
        self.pyramidLevels = pyramidLevels
        self.windowHalfWidth = windowHalfWidth
        self.maxWorkers = maxWorkers or os.cpu_count() or 1
        self.localShape = localShape
        self.memoryLimit = memoryLimit
        self.determinantEpsilon = determinantEpsilon
        self.profiling = profiling
        self.residency = residency or ResidencyConfig()


class PipelineResult(object):
    """All pyramids of a run. Owns the device images until release()."""
    def __init__(self, context, first, second, gradientX, gradientY, tensor, flow, profile):
        self.context = context
        self.first = first
        self.second = second
        self.gradientX = gradientX
        self.gradientY = gradientY
        self.tensor = tensor
        self.flow = flow
        self.profile = profile

    @property
    def pyramids(self):
        return [self.first, self.second, self.gradientX, self.gradientY, self.tensor, self.flow]

    def flowField(self):
        return self.flow.flowField()

    def release(self):
        self.context.releaseAll()


class PyramidalLucasKanade(object):
    """
    Dense pyramidal Lucas-Kanade optical flow between two 8-bit frames.

    Every stage is dispatched on one execution graph without host blocking;
    the host waits once, at the terminal drain.
    """
    def __init__(self, config=None, program=None):
        self.config = config or PipelineConfig()
        self.program = program or Program()

    def getAlgoName(self):
        return 'Pyramidal Lucas-Kanade (device graph)'

    def compute(self, im1, im2):
        im1 = np.asarray(im1)
        im2 = np.asarray(im2)
        if im1.shape != im2.shape:
            raise DimensionMismatch(f'The images have different dimensions: {im1.shape} and {im2.shape}',
                                    im1.shape, im2.shape)
        if im1.ndim != 2 or im1.dtype != np.uint8 or im2.dtype != np.uint8:
            raise ValueError(f'Expected two 2D 8-bit intensity images, got {im1.dtype} and {im2.dtype} '
                             f'with shape {im1.shape}')
        config = self.config
        height, width = im1.shape
        levelDimensions(width, height, config.pyramidLevels)

        self.program.build()
        logger.info('Computing %d-level pyramidal Lucas-Kanade flow on %dx%d images, window %dx%d',
                    config.pyramidLevels, width, height,
                    2 * config.windowHalfWidth + 1, 2 * config.windowHalfWidth + 1)

        context = DeviceContext(memoryLimit=config.memoryLimit)
        profile = ProfileRecorder() if config.profiling else None
        graph = ExecutionGraph(maxWorkers=config.maxWorkers, profiler=profile)
        try:
            with TimedEvent('optical_flow_all'):
                result = self._dispatch(context, graph, im1, im2, profile)
                graph.drain()
        except BaseException:
            graph.close()
            context.releaseAll()
            raise
        graph.close()
        logger.info('Pipeline retired %d operations', len(graph.handles))
        return result

    def _dispatch(self, context, graph, im1, im2, profile):
        config = self.config
        arguments = (context, graph, self.program)
        pyramids = PyramidBuilder(*arguments, residency=config.residency, localShape=config.localShape)
        first = pyramids.build(im1, config.pyramidLevels, name='Image 1')
        second = pyramids.build(im2, config.pyramidLevels, name='Image 2')

        gradients = GradientPyramidBuilder(*arguments, residency=config.residency, localShape=config.localShape)
        gradientX = gradients.build(first, AXIS_X)
        gradientY = gradients.build(first, AXIS_Y)

        tensor = StructureTensorBuilder(*arguments, windowHalfWidth=config.windowHalfWidth,
                                        residency=config.residency,
                                        localShape=config.localShape).build(gradientX, gradientY)

        flow = FlowEstimator(*arguments, determinantEpsilon=config.determinantEpsilon,
                             residency=config.residency,
                             localShape=config.localShape).estimate(first, second, gradientX, gradientY, tensor)
        return PipelineResult(context, first, second, gradientX, gradientY, tensor, flow, profile)
