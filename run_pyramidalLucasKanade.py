#!/usr/bin/env python
"""
Run the pyramidal Lucas-Kanade pipeline on a pair of frames.

Writes the per-operation profile table, the final flow field (.mat) and,
optionally, every pyramid level as an image and a quiver plot of the flow.
Without input frames a shifted pair is synthesized from skimage's camera image.
"""

import os
import sys
import argparse
import logging
import numpy as np
from skimage.data import camera
from tqdm import tqdm

# Add the src and utils directories to the path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), 'src')))
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), 'utils')))

from DeviceImage import Residency, ResidencyConfig
from OpticalFlowErrors import OpticalFlowError
from ProfileRecorder import TimedEvent
from PyramidalLucasKanade import PyramidalLucasKanade, PipelineConfig
import imageIO
from flow_utils import save_flow, visualize_flow, flow_statistics

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)


def synthesize_frames(shift_x=3, shift_y=2, size=256):
    """Crop two frames of the camera image, the second shifted by (shift_x, shift_y)."""
    image = camera()
    top, left = 128, 128
    im1 = image[top:top + size, left:left + size]
    im2 = image[top - shift_y:top - shift_y + size, left - shift_x:left - shift_x + size]
    return np.ascontiguousarray(im1), np.ascontiguousarray(im2)


def load_frames(first, second):
    with TimedEvent('read_image'):
        width1, height1, im1 = imageIO.decode(first)
        width2, height2, im2 = imageIO.decode(second)
    logging.info(f"Loaded {first} ({width1}x{height1}) and {second} ({width2}x{height2})")
    return im1, im2


def export_levels(result, output_dir):
    """Encode every host-visible level of every pyramid."""
    levels_dir = os.path.join(output_dir, 'levels')
    os.makedirs(levels_dir, exist_ok=True)
    for pyramid in tqdm(result.pyramids, desc="Exporting pyramids"):
        for i in range(len(pyramid)):
            image, handle = pyramid.level(i)
            handle.wait()
            if image.residency is not Residency.HOST_VISIBLE:
                continue
            filename = os.path.join(levels_dir, f"{pyramid.name.replace(' ', '_')}_level{i}.png")
            with TimedEvent('save_image'):
                imageIO.encode(image.map(), filename)


def main(argv=None):
    parser = argparse.ArgumentParser(description='Dense pyramidal Lucas-Kanade optical flow.')
    parser.add_argument('first', nargs='?', help='First frame')
    parser.add_argument('second', nargs='?', help='Second frame')
    parser.add_argument('--levels', type=int, default=3,
                        help='Number of pyramid levels')
    parser.add_argument('--window', type=int, default=2,
                        help='Half width of the Lucas-Kanade window')
    parser.add_argument('--workers', type=int, default=None,
                        help='Number of device worker threads')
    parser.add_argument('--output_dir', type=str, default='flow_results',
                        help='Output directory')
    parser.add_argument('--profile', type=str, default='profile.csv',
                        help='Profile table file name, inside the output directory')
    parser.add_argument('--export_levels', action='store_true',
                        help='Encode every pyramid level as an image')
    parser.add_argument('--plot', action='store_true',
                        help='Save a quiver plot of the final flow')
    args = parser.parse_args(argv)

    if (args.first is None) != (args.second is None):
        parser.error('either both frames or none must be given')

    try:
        if args.first is None:
            logging.info("No frames given, synthesizing a pair shifted by (3, 2) from the camera image")
            im1, im2 = synthesize_frames()
        else:
            im1, im2 = load_frames(args.first, args.second)

        residency = ResidencyConfig.allHostVisible() if args.export_levels else ResidencyConfig()
        config = PipelineConfig(pyramidLevels=args.levels, windowHalfWidth=args.window,
                                maxWorkers=args.workers, residency=residency)
        lk = PyramidalLucasKanade(config)
        result = lk.compute(im1, im2)
    except OpticalFlowError as e:
        logging.error(f"{type(e).__name__}: {e}")
        return 1

    os.makedirs(args.output_dir, exist_ok=True)
    try:
        result.profile.save(os.path.join(args.output_dir, args.profile))
        logging.info(f"Max counter: {result.profile.maxCounter()}")

        flow = result.flowField()
        U = np.array(flow[:, :, 0])
        V = np.array(flow[:, :, 1])
        save_flow(U, V, os.path.join(args.output_dir, 'flow.mat'))
        stats = flow_statistics(U, V, border=2 * args.window + 1)
        logging.info(f"Median flow: u={stats['median_u']:.3f}, v={stats['median_v']:.3f}, "
                     f"max magnitude={stats['max_magnitude']:.3f}")

        if args.export_levels:
            export_levels(result, args.output_dir)
        if args.plot:
            visualize_flow(U, V, lk.getAlgoName(), os.path.join(args.output_dir, 'flow.png'), background=im1)
    finally:
        result.release()
    return 0


if __name__ == "__main__":
    sys.exit(main())
