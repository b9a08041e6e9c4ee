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

# Exceptions raised by the pyramidal Lucas-Kanade pipeline.
# Every failure is fatal for the frame pair being processed, nothing is retried.


class OpticalFlowError(Exception):
    """Base class for all pipeline failures."""


class DimensionMismatch(OpticalFlowError, ValueError):
    """Input frames (or pyramids combined by a stage) differ in size."""

    def __init__(self, message, firstShape=None, secondShape=None):
        super().__init__(message)
        self.firstShape = firstShape
        self.secondShape = secondShape


class DeviceOperationFailure(OpticalFlowError):
    """A dispatched operation failed to launch or to execute."""

    def __init__(self, operationName, cause=None):
        if cause is None:
            message = f"Operation '{operationName}' failed"
        else:
            message = f"Operation '{operationName}' failed: {cause}"
        super().__init__(message)
        self.operationName = operationName
        self.cause = cause


class ResourceExhaustion(OpticalFlowError, MemoryError):
    """An image could not be allocated."""


class ConfigurationError(OpticalFlowError):
    """The device program failed to build. buildLog holds the raw compiler output."""

    def __init__(self, message, buildLog=''):
        super().__init__(f"{message}\n{buildLog}" if buildLog else message)
        self.buildLog = buildLog


class MissingDependencyError(OpticalFlowError):
    """An operation reads an image whose producer is not in its wait-list."""


class SingleWriterViolation(OpticalFlowError):
    """An image already produced by one operation was bound as output of another."""


class HostAccessError(OpticalFlowError):
    """A device-only image was mapped into host memory."""
