#!/usr/bin/env python3
"""
Generate synthetic calibration samples from known eye extrinsics.

Useful to check the calibration end to end without a camera rig: the
samples are consistent with the given pose, so compute_extrinsics.py
should recover it.

Usage:
    python3 generate_samples.py --pose 0.01 0.0 0.0 0.0 0.0 0.05 \
        --num-samples 50 --output samples.yaml
"""

import argparse
import numpy as np
import os
import sys

# Add package to path for standalone execution
try:
    from eyes_extrinsic_calibration.calibration_data import generate_samples, save_samples_yaml
    from eyes_extrinsic_calibration.pso import get_extrinsics
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from eyes_extrinsic_calibration.calibration_data import generate_samples, save_samples_yaml
    from eyes_extrinsic_calibration.pso import get_extrinsics


def main():
    parser = argparse.ArgumentParser(
        description='Generate synthetic eye calibration samples'
    )

    parser.add_argument('--pose', type=float, nargs=6, default=[0.0] * 6,
                       metavar=('X', 'Y', 'Z', 'ROLL', 'PITCH', 'YAW'),
                       help='Ground-truth pose [m, rad] (right eye; left is mirrored)')
    parser.add_argument('--num-samples', '-n', type=int, default=50,
                       help='Number of samples (default: 50)')
    parser.add_argument('--translation-noise', type=float, default=0.0,
                       help='Std. dev. of translation noise [m]')
    parser.add_argument('--rotation-noise', type=float, default=0.0,
                       help='Std. dev. of rotation noise [rad]')
    parser.add_argument('--seed', type=int, default=None,
                       help='Random seed')
    parser.add_argument('--output', '-o', type=str, default='samples.yaml',
                       help='Output samples file (default: samples.yaml)')

    args = parser.parse_args()

    if args.num_samples < 1:
        print("ERROR: --num-samples must be >= 1")
        sys.exit(1)

    extrinsics_left, extrinsics_right = get_extrinsics(args.pose)
    store = generate_samples(
        extrinsics_left, extrinsics_right, args.num_samples,
        rng=np.random.default_rng(args.seed),
        translation_noise=args.translation_noise,
        rotation_noise=args.rotation_noise
    )

    save_samples_yaml(store, args.output)
    print(f"Saved {len(store)} samples to {args.output}")


if __name__ == '__main__':
    main()
