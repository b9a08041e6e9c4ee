"""
Test file for the flow export helpers and the command line runner.
"""

import os
import sys
import numpy as np
from scipy.io import loadmat

# Add the utils directory and the repository root to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'utils')))
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from flow_utils import save_flow, flow_statistics, visualize_flow
import run_pyramidalLucasKanade


def test_flow_statistics_ignores_border():
    U = np.ones((10, 10))
    V = np.zeros((10, 10))
    U[0, :] = 100.0
    stats = flow_statistics(U, V, border=1)
    assert stats['median_u'] == 1.0
    assert stats['mean_v'] == 0.0
    assert stats['max_magnitude'] == 1.0


def test_save_flow(tmp_path):
    U = np.full((6, 8), 2.0)
    V = np.full((6, 8), -1.0)
    filename = str(tmp_path / 'flow.mat')
    save_flow(U, V, filename)
    data = loadmat(filename)
    assert 'velocities' in data
    assert 'parameters' in data


def test_visualize_flow(tmp_path):
    U = np.random.RandomState(11).rand(32, 32)
    V = np.zeros((32, 32))
    filename = str(tmp_path / 'flow.png')
    visualize_flow(U, V, 'test', filename, background=np.zeros((32, 32)), quiver_skip=4)
    assert os.path.exists(filename)


def test_runner_on_synthesized_frames(tmp_path):
    output_dir = str(tmp_path / 'results')
    status = run_pyramidalLucasKanade.main(['--levels', '3', '--output_dir', output_dir, '--export_levels'])
    assert status == 0
    assert os.path.exists(os.path.join(output_dir, 'profile.csv'))
    assert os.path.exists(os.path.join(output_dir, 'flow.mat'))
    assert os.path.exists(os.path.join(output_dir, 'levels', 'Image_1_level2.png'))


def test_runner_reports_mismatched_frames(tmp_path):
    from PIL import Image
    first = str(tmp_path / 'a.png')
    second = str(tmp_path / 'b.png')
    Image.fromarray(np.zeros((32, 32), np.uint8)).save(first)
    Image.fromarray(np.zeros((16, 32), np.uint8)).save(second)
    assert run_pyramidalLucasKanade.main([first, second, '--output_dir', str(tmp_path)]) == 1
