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
import threading
from enum import Enum

import numpy as np

from OpticalFlowErrors import ResourceExhaustion, SingleWriterViolation, HostAccessError

logger = logging.getLogger(__name__)


class Residency(Enum):
    HOST_VISIBLE = 'host_visible'
    DEVICE_ONLY = 'device_only'


class ResidencyConfig(object):
    """
    Memory residency of the images of a run.

    input: uploaded level 0 of both frames, intermediate: temporaries of the
    separable passes, output: every other pyramid level (exported images).
    """
    def __init__(self, input=Residency.HOST_VISIBLE, intermediate=Residency.DEVICE_ONLY,
                 output=Residency.HOST_VISIBLE):
        self.input = Residency(input)
        self.intermediate = Residency(intermediate)
        self.output = Residency(output)

    @classmethod
    def allHostVisible(cls):
        return cls(Residency.HOST_VISIBLE, Residency.HOST_VISIBLE, Residency.HOST_VISIBLE)

    def __repr__(self):
        return (f'ResidencyConfig(input={self.input.value}, intermediate={self.intermediate.value}, '
                f'output={self.output.value})')


class ImageFormat(object):
    """Channel layout and sample type of a device image."""
    def __init__(self, name, channelOrder, dtype):
        self.name = name
        self.channelOrder = channelOrder
        self.channels = len(channelOrder)
        self.dtype = np.dtype(dtype)

    def shape(self, width, height):
        if self.channels == 1:
            return (height, width)
        return (height, width, self.channels)

    def bytesFor(self, width, height):
        return width * height * self.channels * self.dtype.itemsize

    def __repr__(self):
        return f'ImageFormat({self.name}, {self.channelOrder}, {self.dtype})'


INTENSITY = ImageFormat('intensity', 'R', np.uint8)
DERIVATIVE = ImageFormat('derivative', 'R', np.int16)
TENSOR = ImageFormat('tensor', 'RGBA', np.int32)
FLOW = ImageFormat('flow', 'RG', np.float32)


class DeviceImage(object):
    """
    A 2D grid of samples living on the compute device.

    The image is written by exactly one operation (its producer) and is
    read-only once that operation retired. Host code only reaches the samples
    through map(), which waits for the producer.
    """
    def __init__(self, width, height, imageFormat, residency, name=None, data=None):
        self.width = int(width)
        self.height = int(height)
        self.format = imageFormat
        self.residency = residency
        self.name = name
        if data is None:
            data = np.zeros(imageFormat.shape(self.width, self.height), dtype=imageFormat.dtype)
        self.data = data
        self.producer = None
        self.released = False

    @property
    def rowStride(self):
        return self.data.strides[0]

    @property
    def nbytes(self):
        return self.data.nbytes

    @property
    def dimensions(self):
        return (self.width, self.height)

    def bindProducer(self, handle):
        if self.producer is not None:
            raise SingleWriterViolation(
                f"Image '{self.name}' is already written by '{self.producer.name}', "
                f"cannot bind it as output of '{handle.name}'")
        self.producer = handle

    def map(self):
        """Block until the producer retired and return a read-only host view."""
        if self.released:
            raise HostAccessError(f"Image '{self.name}' has been released")
        if self.residency is not Residency.HOST_VISIBLE:
            raise HostAccessError(f"Image '{self.name}' is device-only and cannot be mapped")
        if self.producer is not None:
            self.producer.wait()
        view = self.data.view()
        view.flags.writeable = False
        return view

    def release(self):
        self.data = None
        self.released = True

    def __repr__(self):
        return f'DeviceImage({self.name!r}, {self.width}x{self.height}, {self.format.name}, {self.residency.value})'


class DeviceContext(object):
    """
    Allocates device images and keeps track of them until teardown.

    memoryLimit (bytes) emulates the capacity of the device; None means the
    host memory is the only limit.
    """
    def __init__(self, memoryLimit=None):
        self.memoryLimit = memoryLimit
        self.allocatedBytes = 0
        self.images = []
        self._lock = threading.Lock()

    def allocateImage(self, width, height, imageFormat, residency, name=None):
        requested = imageFormat.bytesFor(width, height)
        with self._lock:
            if self.memoryLimit is not None and self.allocatedBytes + requested > self.memoryLimit:
                raise ResourceExhaustion(
                    f"Cannot allocate {requested} bytes for '{name}': "
                    f"{self.allocatedBytes} of {self.memoryLimit} bytes already in use")
            try:
                image = DeviceImage(width, height, imageFormat, residency, name=name)
            except MemoryError as e:
                raise ResourceExhaustion(f"Cannot allocate {requested} bytes for '{name}'") from e
            self.allocatedBytes += requested
            self.images.append(image)
        logger.debug('Allocated %s (%d bytes)', image, requested)
        return image

    def releaseAll(self):
        with self._lock:
            for image in self.images:
                image.release()
            logger.debug('Released %d images (%d bytes)', len(self.images), self.allocatedBytes)
            self.images = []
            self.allocatedBytes = 0
