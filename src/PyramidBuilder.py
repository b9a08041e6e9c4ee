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

import numpy as np

from DeviceImage import INTENSITY, ResidencyConfig
from Pyramid import Pyramid, levelDimensions

logger = logging.getLogger(__name__)


class PyramidBuilder(object):
    """
    Builds the multi-resolution pyramid of one frame with a separable
    two-pass down-filter: DownFilterX smooths level i horizontally into an
    intermediate image, DownFilterY smooths it vertically and halves both
    axes into level i+1. Each pass waits on its direct predecessor only, so
    the pyramids of unrelated frames are built concurrently.
    """
    def __init__(self, context, graph, program, residency=None, localShape=None):
        self.context = context
        self.graph = graph
        self.program = program
        self.residency = residency or ResidencyConfig()
        self.localShape = localShape

    def build(self, source, levels, name='Image 1'):
        source = np.asarray(source)
        if source.ndim != 2 or source.dtype != np.uint8:
            raise ValueError(f'{name} must be a 2D 8-bit intensity image, got {source.dtype} {source.shape}')
        # private copy, the caller may reuse its buffer while the upload is pending
        source = np.array(source, order='C', copy=True)
        height, width = source.shape
        dimensions = levelDimensions(width, height, levels)
        logger.debug('Building %d-level pyramid of %s (%dx%d)', levels, name, width, height)

        level0 = self.context.allocateImage(width, height, INTENSITY, self.residency.input,
                                            name=f'{name} Level 0')
        self.graph.enqueue(self.program.kernel('upload_image'), [source], [level0],
                           name=f'Copy {name}')
        images = [level0]

        for i in range(levels - 1):
            current = images[-1]
            intermediate = self.context.allocateImage(current.width, current.height, INTENSITY,
                                                      self.residency.intermediate,
                                                      name=f'{name} Level {i} X')
            self.graph.enqueue(self.program.kernel('downfilter_x'), [current], [intermediate],
                               waitHandles=[current.producer], localShape=self.localShape,
                               name=f'DownFilterX {name} Level {i}')

            nextWidth, nextHeight = dimensions[i + 1]
            nextLevel = self.context.allocateImage(nextWidth, nextHeight, INTENSITY, self.residency.output,
                                                   name=f'{name} Level {i + 1}')
            self.graph.enqueue(self.program.kernel('downfilter_y'), [intermediate], [nextLevel],
                               waitHandles=[intermediate.producer], localShape=self.localShape,
                               name=f'DownFilterY {name} Level {i}')
            images.append(nextLevel)

        return Pyramid(name, images)
