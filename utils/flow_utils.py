#!/usr/bin/env python
"""
Utility functions for exporting and inspecting flow fields.

Used by run_pyramidalLucasKanade.py to store the final flow pyramid level and
to plot it next to the input frames.
"""

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
from scipy.io import savemat


def save_flow(U, V, filename):
    """Save flow field to a .mat file."""
    margins = {'top': 0, 'left': 0, 'bottom': 0, 'right': 0}
    results = {'u': U, 'v': V, 'iaWidth': 1, 'iaHeight': 1, 'margins': margins}
    parameters = {'overlapFactor': 1.0, 'imageHeight': np.size(U, 0), 'imageWidth': np.size(U, 1)}

    savemat(filename, mdict={'velocities': results, 'parameters': parameters})
    print(f"Flow saved to {filename}")


def flow_statistics(U, V, border=0):
    """Mean, median and maximum magnitude of a flow field, ignoring a border."""
    if border > 0:
        U = U[border:-border, border:-border]
        V = V[border:-border, border:-border]
    magnitude = np.sqrt(U**2 + V**2)
    return {
        'mean_u': float(np.mean(U)),
        'mean_v': float(np.mean(V)),
        'median_u': float(np.median(U)),
        'median_v': float(np.median(V)),
        'max_magnitude': float(np.max(magnitude)) if magnitude.size else 0.0,
    }


def visualize_flow(U, V, title, output_file=None, background=None, quiver_skip=8):
    """Visualize flow field as quiver plot, optionally over the first frame."""
    plt.figure(figsize=(12, 10))

    if background is not None:
        plt.imshow(background, cmap='gray')

    y, x = np.mgrid[0:U.shape[0]:quiver_skip, 0:U.shape[1]:quiver_skip]
    u_skip = U[::quiver_skip, ::quiver_skip]
    v_skip = V[::quiver_skip, ::quiver_skip]

    # Calculate magnitude for coloring
    magnitude = np.sqrt(u_skip**2 + v_skip**2)
    upper = np.percentile(magnitude, 95) if magnitude.size else 0.0

    quiv = plt.quiver(x, y, u_skip, v_skip, magnitude,
                      angles='xy', scale_units='xy', scale=1.0,
                      cmap='jet', clim=[0, max(upper, 1e-6)])
    plt.colorbar(quiv, label='Magnitude (pixels/frame)')

    plt.title(title)
    plt.xlim(0, U.shape[1])
    plt.ylim(U.shape[0], 0)  # Invert y-axis to match image coordinates
    plt.grid(True, alpha=0.3)

    if output_file:
        plt.savefig(output_file, dpi=200)
        print(f"Flow visualization saved to {output_file}")

    plt.close()
