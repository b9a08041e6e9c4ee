"""
Test file for the structure tensor pyramid.
"""

import os
import sys
import pytest
import numpy as np
from scipy import ndimage

# Add the src directory to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from DeviceImage import DeviceContext, ResidencyConfig
from ExecutionGraph import ExecutionGraph
from GradientPyramidBuilder import GradientPyramidBuilder, AXIS_X, AXIS_Y
from OpticalFlowErrors import DimensionMismatch
from PyramidBuilder import PyramidBuilder
from StructureTensorBuilder import StructureTensorBuilder
from opticalFlowKernels_Numba import Program, tensorShift

PROGRAM = Program().build()


def build_tensor(image, levels, windowHalfWidth=2):
    context = DeviceContext()
    residency = ResidencyConfig.allHostVisible()
    with ExecutionGraph(maxWorkers=4) as graph:
        base = PyramidBuilder(context, graph, PROGRAM, residency).build(image, levels)
        gradients = GradientPyramidBuilder(context, graph, PROGRAM, residency)
        gradientX = gradients.build(base, AXIS_X)
        gradientY = gradients.build(base, AXIS_Y)
        tensor = StructureTensorBuilder(context, graph, PROGRAM, windowHalfWidth, residency).build(
            gradientX, gradientY)
        graph.drain()
    return gradientX, gradientY, tensor, graph


def reference_tensor(gx, gy, radius, shift):
    window = np.ones((2 * radius + 1, 2 * radius + 1), dtype=np.int64)
    gx = gx.astype(np.int64)
    gy = gy.astype(np.int64)
    sums = [ndimage.correlate(product, window, mode='nearest') >> shift
            for product in (gx * gx, gx * gy, gx * gy, gy * gy)]
    return np.stack(sums, axis=2)


def test_tensor_shift():
    assert tensorShift(0) == 0
    assert tensorShift(2) == 0
    assert tensorShift(4) == 2


def test_flat_image_gives_zero_tensor():
    gradientX, _, tensor, _ = build_tensor(np.full((32, 32), 12, dtype=np.uint8), 3)
    assert len(tensor) == 3
    for level in tensor:
        assert level.map().shape[2] == 4
        assert np.all(level.map() == 0)


@pytest.mark.parametrize("windowHalfWidth", [1, 2, 4])
def test_matches_windowed_sums(windowHalfWidth):
    image = np.random.RandomState(6).randint(0, 256, (40, 36)).astype(np.uint8)
    gradientX, gradientY, tensor, _ = build_tensor(image, 2, windowHalfWidth)
    assert tensor.shift == tensorShift(windowHalfWidth)
    for i in range(2):
        expected = reference_tensor(gradientX[i].map(), gradientY[i].map(), windowHalfWidth, tensor.shift)
        np.testing.assert_array_equal(tensor[i].map(), expected)


def test_tensor_is_symmetric_with_non_negative_diagonal():
    image = np.random.RandomState(7).randint(0, 256, (32, 32)).astype(np.uint8)
    _, _, tensor, _ = build_tensor(image, 2)
    for level in tensor:
        values = level.map()
        assert values.dtype == np.int32
        np.testing.assert_array_equal(values[:, :, 1], values[:, :, 2])
        assert np.all(values[:, :, 0] >= 0)
        assert np.all(values[:, :, 3] >= 0)


def test_saturated_edges_do_not_overflow():
    image = np.zeros((32, 32), dtype=np.uint8)
    image[::2, ::2] = 255
    image[1::2, 1::2] = 255
    _, _, tensor, _ = build_tensor(image, 1, windowHalfWidth=4)
    assert np.all(tensor[0].map()[:, :, 0] >= 0)


def test_levels_wait_on_both_gradients():
    gradientX, gradientY, tensor, _ = build_tensor(np.zeros((16, 16), dtype=np.uint8), 2)
    for i in range(2):
        assert set(tensor.handle(i).waitHandles) == {gradientX.handle(i), gradientY.handle(i)}
        assert tensor.handle(i).name == f'StructureTensor Level {i}'


def test_level_count_mismatch():
    context = DeviceContext()
    with ExecutionGraph(maxWorkers=2) as graph:
        gradients = GradientPyramidBuilder(context, graph, PROGRAM)
        base3 = PyramidBuilder(context, graph, PROGRAM).build(np.zeros((16, 16), np.uint8), 3, name='a')
        base2 = PyramidBuilder(context, graph, PROGRAM).build(np.zeros((16, 16), np.uint8), 2, name='b')
        with pytest.raises(DimensionMismatch):
            StructureTensorBuilder(context, graph, PROGRAM).build(gradients.build(base3, AXIS_X),
                                                                  gradients.build(base2, AXIS_Y))
        graph.drain()


def test_level_size_mismatch():
    context = DeviceContext()
    with ExecutionGraph(maxWorkers=2) as graph:
        gradients = GradientPyramidBuilder(context, graph, PROGRAM)
        baseA = PyramidBuilder(context, graph, PROGRAM).build(np.zeros((16, 16), np.uint8), 2, name='a')
        baseB = PyramidBuilder(context, graph, PROGRAM).build(np.zeros((16, 20), np.uint8), 2, name='b')
        with pytest.raises(DimensionMismatch):
            StructureTensorBuilder(context, graph, PROGRAM).build(gradients.build(baseA, AXIS_X),
                                                                  gradients.build(baseB, AXIS_Y))
        graph.drain()


def test_negative_window_is_rejected():
    with pytest.raises(ValueError):
        StructureTensorBuilder(DeviceContext(), None, PROGRAM, windowHalfWidth=-1)


if __name__ == "__main__":
    # Run the tests
    test_tensor_shift()
    test_flat_image_gives_zero_tensor()
    test_matches_windowed_sums(2)
    test_tensor_is_symmetric_with_non_negative_diagonal()
    test_saturated_edges_do_not_overflow()
    test_levels_wait_on_both_gradients()
    test_level_count_mismatch()
    test_level_size_mismatch()
    test_negative_window_is_rejected()
    print("All tests passed!")
