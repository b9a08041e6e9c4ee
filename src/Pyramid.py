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


def levelDimensions(width, height, levels):
    """
    Dimensions of every pyramid level, finest first.

    Halving truncates: level i is floor(width / 2^i) x floor(height / 2^i).
    """
    if levels < 1:
        raise ValueError(f'A pyramid needs at least one level, got {levels}')
    dimensions = [(width >> i, height >> i) for i in range(levels)]
    coarsestWidth, coarsestHeight = dimensions[-1]
    if coarsestWidth < 1 or coarsestHeight < 1:
        raise ValueError(f'{levels} pyramid levels are too many for a {width}x{height} image')
    return dimensions


class Pyramid(object):
    """
    Ordered sequence of device images, index 0 is the finest level.

    The pyramid owns its images, and through them the completion handles of
    the operations producing them, until it is released.
    """
    def __init__(self, name, images):
        self.name = name
        self.images = list(images)

    def __len__(self):
        return len(self.images)

    def __getitem__(self, index):
        return self.images[index]

    def __iter__(self):
        return iter(self.images)

    def level(self, index):
        """Read accessor for export: (image, completion handle of its producer)."""
        image = self.images[index]
        return image, image.producer

    def handle(self, index):
        return self.images[index].producer

    @property
    def handles(self):
        return [image.producer for image in self.images]

    def dimensions(self):
        return [image.dimensions for image in self.images]

    def release(self):
        for image in self.images:
            image.release()

    def __repr__(self):
        return f'{type(self).__name__}({self.name!r}, levels={len(self.images)})'


class GradientPyramid(Pyramid):
    def __init__(self, name, images, axis):
        super().__init__(name, images)
        self.axis = axis


class StructureTensorPyramid(Pyramid):
    def __init__(self, name, images, shift, windowHalfWidth):
        super().__init__(name, images)
        self.shift = shift
        self.windowHalfWidth = windowHalfWidth


class FlowPyramid(Pyramid):
    def flowField(self):
        """Final flow (level 0) as a host (height, width, 2) array."""
        return self.images[0].map()
