"""
Test file for the ExecutionGraph dependency scheduling.
"""

import os
import sys
import threading
import time
import pytest
import numpy as np

# Add the src directory to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from DeviceImage import DeviceContext, INTENSITY, Residency
from ExecutionGraph import ExecutionGraph, CompletionHandle, batches, QUEUED, SUBMITTED, STARTED, ENDED
from OpticalFlowErrors import DeviceOperationFailure, MissingDependencyError, SingleWriterViolation


def fill_slowly(dst, x0, y0, x1, y1, value, delay):
    """Python kernel writing value after an artificial delay."""
    time.sleep(delay)
    dst[y0:y1, x0:x1] = value


def copy_kernel(src, dst, x0, y0, x1, y1):
    dst[y0:y1, x0:x1] = src[y0:y1, x0:x1]


def failing_kernel(dst, x0, y0, x1, y1):
    raise RuntimeError('kernel launch failed')


def make_image(context, name, width=8, height=8):
    return context.allocateImage(width, height, INTENSITY, Residency.HOST_VISIBLE, name=name)


def test_dependent_waits_for_delayed_producer():
    """A consumer never observes the output of a delayed producer before it retired."""
    context = DeviceContext()
    with ExecutionGraph(maxWorkers=4) as graph:
        produced = make_image(context, 'produced')
        consumed = make_image(context, 'consumed')
        producer = graph.enqueue(fill_slowly, [], [produced], scalarParams=(7, 0.2), name='producer')
        consumer = graph.enqueue(copy_kernel, [produced], [consumed], waitHandles=[producer], name='consumer')
        graph.drain()

        assert np.all(consumed.map() == 7)
        assert consumer.getProfilingInfo(STARTED) >= producer.getProfilingInfo(ENDED)


def test_independent_operations_run_concurrently():
    """Two operations without a dependency edge can be running at the same time."""
    barrier = threading.Barrier(2, timeout=5)

    def rendezvous(dst, x0, y0, x1, y1):
        barrier.wait()
        dst[y0:y1, x0:x1] = 1

    context = DeviceContext()
    with ExecutionGraph(maxWorkers=2) as graph:
        graph.enqueue(rendezvous, [], [make_image(context, 'a')], name='a')
        graph.enqueue(rendezvous, [], [make_image(context, 'b')], name='b')
        graph.drain()


def test_failure_surfaces_at_synchronization_point():
    """A failing kernel does not raise at dispatch, only at wait() or drain()."""
    context = DeviceContext()
    graph = ExecutionGraph(maxWorkers=2)
    try:
        broken = make_image(context, 'broken')
        after = make_image(context, 'after')
        failed = graph.enqueue(failing_kernel, [], [broken], name='broken op')
        dependent = graph.enqueue(copy_kernel, [broken], [after], waitHandles=[failed], name='dependent op')

        with pytest.raises(DeviceOperationFailure) as info:
            graph.drain()
        assert info.value.operationName == 'broken op'

        with pytest.raises(DeviceOperationFailure) as info:
            dependent.wait()
        assert info.value.operationName == 'dependent op'
        assert 'broken op' in str(info.value)
        assert np.all(after.data == 0)
    finally:
        graph.close()


def test_missing_dependency_edge_is_rejected():
    context = DeviceContext()
    with ExecutionGraph(maxWorkers=2) as graph:
        produced = make_image(context, 'produced')
        consumed = make_image(context, 'consumed')
        graph.enqueue(fill_slowly, [], [produced], scalarParams=(1, 0.0), name='producer')
        with pytest.raises(MissingDependencyError):
            graph.enqueue(copy_kernel, [produced], [consumed], name='consumer')
        graph.drain()


def test_transitive_dependency_is_accepted():
    context = DeviceContext()
    with ExecutionGraph(maxWorkers=2) as graph:
        first = make_image(context, 'first')
        second = make_image(context, 'second')
        third = make_image(context, 'third')
        h1 = graph.enqueue(fill_slowly, [], [first], scalarParams=(3, 0.05), name='first')
        h2 = graph.enqueue(copy_kernel, [first], [second], waitHandles=[h1], name='second')
        # first is only reachable through h2
        graph.enqueue(copy_kernel, [first], [third], waitHandles=[h2], name='third')
        graph.drain()
        assert np.all(third.map() == 3)


def test_single_writer_is_enforced():
    context = DeviceContext()
    with ExecutionGraph(maxWorkers=1) as graph:
        image = make_image(context, 'image')
        graph.enqueue(fill_slowly, [], [image], scalarParams=(1, 0.0), name='writer')
        with pytest.raises(SingleWriterViolation):
            graph.enqueue(fill_slowly, [], [image], scalarParams=(2, 0.0), name='second writer')
        graph.drain()


def test_local_shape_batches_cover_domain():
    calls = []

    def record(dst, x0, y0, x1, y1):
        calls.append((x0, y0, x1, y1))
        dst[y0:y1, x0:x1] += 1

    context = DeviceContext()
    with ExecutionGraph(maxWorkers=1) as graph:
        image = make_image(context, 'image', width=8, height=4)
        graph.enqueue(record, [], [image], localShape=(4, 2), name='batched')
        graph.drain()
        assert len(calls) == 4
        assert np.all(image.map() == 1)


def test_invalid_local_shape_fails_at_drain():
    context = DeviceContext()
    with ExecutionGraph(maxWorkers=1) as graph:
        image = make_image(context, 'image', width=6, height=6)
        graph.enqueue(copy_kernel, [np.zeros((6, 6), np.uint8)], [image], localShape=(4, 4), name='bad launch')
        with pytest.raises(DeviceOperationFailure):
            graph.drain()


def test_batches():
    assert batches((5, 3)) == [(0, 0, 5, 3)]
    assert batches((4, 4), (2, 4)) == [(0, 0, 2, 4), (2, 0, 4, 4)]
    with pytest.raises(ValueError):
        batches((5, 4), (2, 2))


def test_profiling_timestamps_are_ordered():
    context = DeviceContext()
    with ExecutionGraph(maxWorkers=2) as graph:
        image = make_image(context, 'image')
        handle = graph.enqueue(fill_slowly, [], [image], scalarParams=(1, 0.01), name='op')
        graph.drain()
    stamps = [handle.getProfilingInfo(kind) for kind in (QUEUED, SUBMITTED, STARTED, ENDED)]
    assert stamps == sorted(stamps)


def test_profiling_info_requires_retired_operation():
    handle = CompletionHandle('pending')
    with pytest.raises(RuntimeError):
        handle.getProfilingInfo(ENDED)


def test_wait_list_must_hold_handles():
    context = DeviceContext()
    with ExecutionGraph(maxWorkers=1) as graph:
        with pytest.raises(TypeError):
            graph.enqueue(copy_kernel, [], [make_image(context, 'image')], waitHandles=['not a handle'])


if __name__ == "__main__":
    # Run the tests
    test_dependent_waits_for_delayed_producer()
    test_independent_operations_run_concurrently()
    test_failure_surfaces_at_synchronization_point()
    test_missing_dependency_edge_is_rejected()
    test_transitive_dependency_is_accepted()
    test_single_writer_is_enforced()
    test_local_shape_batches_cover_domain()
    test_invalid_local_shape_fails_at_drain()
    test_batches()
    test_profiling_timestamps_are_ordered()
    test_profiling_info_requires_retired_operation()
    test_wait_list_must_hold_handles()
    print("All tests passed!")
