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

# Dependency graph of asynchronous device operations.
#
# The host thread only dispatches. An operation is handed to the worker pool
# once every handle of its wait-list signalled, so operations without a
# declared dependency may run concurrently and in any order.

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor

from DeviceImage import DeviceImage
from OpticalFlowErrors import DeviceOperationFailure, MissingDependencyError

logger = logging.getLogger(__name__)

QUEUED = 'queued'
SUBMITTED = 'submitted'
STARTED = 'started'
ENDED = 'ended'


class CompletionHandle(object):
    """Signal of one dispatched operation, with its profiling timestamps."""
    def __init__(self, name, waitHandles=()):
        self.name = name
        self.waitHandles = tuple(waitHandles)
        self.timestamps = {QUEUED: time.perf_counter_ns(), SUBMITTED: None, STARTED: None, ENDED: None}
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks = []
        self._error = None

    def _stamp(self, kind):
        self.timestamps[kind] = time.perf_counter_ns()

    def _complete(self, error=None):
        with self._lock:
            self._error = error
            self._event.set()
            callbacks = self._callbacks
            self._callbacks = []
        for callback in callbacks:
            callback(self)

    def addDoneCallback(self, callback):
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback(self)

    def done(self):
        return self._event.is_set()

    def failed(self):
        return self._event.is_set() and self._error is not None

    @property
    def error(self):
        return self._error

    def wait(self, timeout=None):
        """Host synchronization point: raises the failure of this operation, if any."""
        if not self._event.wait(timeout):
            raise TimeoutError(f"Operation '{self.name}' did not retire within {timeout} s")
        if self._error is not None:
            raise self._error

    def getProfilingInfo(self, kind):
        if not self.done():
            raise RuntimeError(f"Operation '{self.name}' has not retired, profiling info unavailable")
        return self.timestamps[kind]

    def ancestors(self):
        """All handles this operation transitively waits on."""
        seen = set()
        stack = list(self.waitHandles)
        while stack:
            handle = stack.pop()
            if id(handle) in seen:
                continue
            seen.add(id(handle))
            stack.extend(handle.waitHandles)
        return seen

    def __repr__(self):
        state = 'failed' if self.failed() else ('done' if self.done() else 'pending')
        return f'CompletionHandle({self.name!r}, {state})'


class ExecutionGraph(object):
    """
    Accepts asynchronous operation dispatches with explicit wait-lists.

    An operation is a kernel called as
    kernel(*inputs, *outputs, x0, y0, x1, y1, *scalarParams) for every batch
    of its iteration domain. Inputs are DeviceImages or host arrays, outputs
    are DeviceImages and become single-writer images of the returned handle.
    """
    def __init__(self, maxWorkers=None, profiler=None, strictDependencies=True):
        self.maxWorkers = maxWorkers or os.cpu_count() or 1
        self.profiler = profiler
        self.strictDependencies = strictDependencies
        self.handles = []
        self._executor = ThreadPoolExecutor(max_workers=self.maxWorkers, thread_name_prefix='device')
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def enqueue(self, kernel, inputs, outputs, scalarParams=(), domain=None, waitHandles=(),
                localShape=None, name=None):
        if self._closed:
            raise RuntimeError('Cannot enqueue on a closed execution graph')
        inputs = list(inputs)
        outputs = list(outputs)
        waitHandles = tuple(waitHandles)
        if name is None:
            name = getattr(kernel, '__name__', 'operation')
        if domain is None:
            domain = outputs[0].dimensions
        for handle in waitHandles:
            if not isinstance(handle, CompletionHandle):
                raise TypeError(f"Wait-list of '{name}' holds {handle!r}, not a completion handle")
        if self.strictDependencies:
            self._checkDependencies(name, inputs, waitHandles)

        handle = CompletionHandle(name, waitHandles)
        for image in outputs:
            image.bindProducer(handle)
        self.handles.append(handle)
        if self.profiler is not None:
            self.profiler.track(handle)

        operation = (kernel, inputs, outputs, tuple(scalarParams), tuple(domain), localShape)
        if not waitHandles:
            self._submit(handle, operation)
            return handle

        remaining = [len(waitHandles)]
        lock = threading.Lock()

        def dependencyDone(_):
            with lock:
                remaining[0] -= 1
                ready = remaining[0] == 0
            if ready:
                self._onDependenciesRetired(handle, operation)

        for dependency in waitHandles:
            dependency.addDoneCallback(dependencyDone)
        return handle

    def _checkDependencies(self, name, inputs, waitHandles):
        reachable = None
        for image in inputs:
            if not isinstance(image, DeviceImage) or image.producer is None:
                continue
            if reachable is None:
                reachable = {id(h) for h in waitHandles}
                for handle in waitHandles:
                    reachable |= handle.ancestors()
            if id(image.producer) not in reachable:
                raise MissingDependencyError(
                    f"Operation '{name}' reads '{image.name}' but its producer "
                    f"'{image.producer.name}' is not in the wait-list")

    def _onDependenciesRetired(self, handle, operation):
        failedDependency = next((h for h in handle.waitHandles if h.failed()), None)
        if failedDependency is not None:
            handle._stamp(SUBMITTED)
            handle._stamp(STARTED)
            handle._stamp(ENDED)
            handle._complete(DeviceOperationFailure(
                handle.name, f"wait-list entry '{failedDependency.name}' failed"))
            return
        self._submit(handle, operation)

    def _submit(self, handle, operation):
        handle._stamp(SUBMITTED)
        try:
            self._executor.submit(self._run, handle, operation)
        except RuntimeError as e:
            # the graph was closed while this operation still waited
            handle._stamp(STARTED)
            handle._stamp(ENDED)
            handle._complete(DeviceOperationFailure(handle.name, e))

    def _run(self, handle, operation):
        kernel, inputs, outputs, scalarParams, domain, localShape = operation
        handle._stamp(STARTED)
        try:
            arguments = [image.data if isinstance(image, DeviceImage) else image for image in inputs]
            arguments += [image.data for image in outputs]
            for x0, y0, x1, y1 in batches(domain, localShape):
                kernel(*arguments, x0, y0, x1, y1, *scalarParams)
        except Exception as e:
            handle._stamp(ENDED)
            logger.debug("Operation '%s' failed: %s", handle.name, e)
            handle._complete(DeviceOperationFailure(handle.name, e))
            return
        handle._stamp(ENDED)
        handle._complete()

    def drain(self):
        """Block until every enqueued operation retired; raise the first failure."""
        for handle in list(self.handles):
            handle._event.wait()
        for handle in self.handles:
            if handle.failed():
                raise handle.error
        logger.debug('Drained %d operations', len(self.handles))

    def close(self):
        if not self._closed:
            self._closed = True
            self._executor.shutdown(wait=True)


def batches(domain, localShape=None):
    """Split a 2D iteration domain (width, height) into (x0, y0, x1, y1) batches."""
    width, height = domain
    if localShape is None:
        return [(0, 0, width, height)]
    localWidth, localHeight = localShape
    if localWidth <= 0 or localHeight <= 0 or width % localWidth or height % localHeight:
        raise ValueError(f'Iteration domain {width}x{height} is not a multiple of '
                         f'the local batch shape {localWidth}x{localHeight}')
    return [(x, y, x + localWidth, y + localHeight)
            for y in range(0, height, localHeight)
            for x in range(0, width, localWidth)]
