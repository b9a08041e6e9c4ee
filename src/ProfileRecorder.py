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
import time

from ExecutionGraph import QUEUED, SUBMITTED, STARTED, ENDED

logger = logging.getLogger(__name__)

PROFILE_HEADER = ';Not Existing;Queued;Submitted;Running'


class ProfileRecord(object):
    def __init__(self, name, queuedOffset, queueLatency, submitLatency, runDuration):
        self.name = name
        self.queuedOffset = queuedOffset
        self.queueLatency = queueLatency
        self.submitLatency = submitLatency
        self.runDuration = runDuration

    def toRow(self):
        return f'{self.name};{self.queuedOffset};{self.queueLatency};{self.submitLatency};{self.runDuration}'

    def __repr__(self):
        return f'ProfileRecord({self.toRow()})'


class ProfileRecorder(object):
    """
    Collects per-operation latencies of a run, in nanoseconds.

    Handles are only registered at dispatch time. Their timestamps are read
    after they retired, so recording never adds a dependency edge.
    """
    def __init__(self):
        self.handles = []

    def track(self, handle):
        self.handles.append(handle)

    def __len__(self):
        return len(self.handles)

    def baseCounter(self):
        """Queued time of the first operation of the run."""
        if not self.handles:
            return 0
        return min(handle.getProfilingInfo(QUEUED) for handle in self.handles)

    def records(self):
        base = self.baseCounter()
        result = []
        for handle in self.handles:
            queued = handle.getProfilingInfo(QUEUED) - base
            submit = handle.getProfilingInfo(SUBMITTED) - base
            start = handle.getProfilingInfo(STARTED) - base
            end = handle.getProfilingInfo(ENDED) - base
            result.append(ProfileRecord(handle.name, queued, submit - queued, start - submit, end - start))
        return result

    def maxCounter(self):
        """End of the last retired operation, relative to the base counter."""
        if not self.handles:
            return 0
        return max(handle.getProfilingInfo(ENDED) for handle in self.handles) - self.baseCounter()

    def write(self, out):
        out.write(PROFILE_HEADER + '\n')
        for record in self.records():
            out.write(record.toRow() + '\n')

    def save(self, filename):
        with open(filename, 'w') as out:
            self.write(out)
        logger.info('Profile of %d operations written to %s', len(self.handles), filename)


class Timer(object):
    """Host wall-clock timer reporting in milliseconds."""
    def __init__(self):
        self._start = None

    def start(self):
        self._start = time.perf_counter()

    def stop(self, event):
        durationInMs = int((time.perf_counter() - self._start) * 1000)
        logger.info("[Timer]: Event '%s' took %d ms", event, durationInMs)
        return durationInMs


class TimedEvent(object):
    """Context manager timing the enclosed block with a Timer."""
    def __init__(self, event):
        self.event = event
        self.timer = Timer()
        self.durationInMs = None

    def __enter__(self):
        self.timer.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.durationInMs = self.timer.stop(self.event)
