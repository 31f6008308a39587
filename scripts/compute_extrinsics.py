#!/usr/bin/env python3
"""
Compute eye extrinsics from recorded calibration samples.

This script loads samples (eye kinematics plus measured relative pose)
from a YAML file, runs the particle swarm calibration and saves the
left and right eye extrinsics.

Usage:
    python3 compute_extrinsics.py \
        --samples /path/to/samples.yaml \
        --config /path/to/pso.yaml \
        --output /path/to/eye_extrinsics.yaml
"""

import argparse
import logging
import numpy as np
import os
import sys

# Add package to path for standalone execution
try:
    from eyes_extrinsic_calibration.calibration_solver import EyesCalibration
    from eyes_extrinsic_calibration.calibration_data import load_samples_yaml
    from eyes_extrinsic_calibration.pso import Parameters
    from eyes_extrinsic_calibration.utils import save_extrinsics_yaml, save_extrinsics_urdf
except ImportError:
    sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
    from eyes_extrinsic_calibration.calibration_solver import EyesCalibration
    from eyes_extrinsic_calibration.calibration_data import load_samples_yaml
    from eyes_extrinsic_calibration.pso import Parameters
    from eyes_extrinsic_calibration.utils import save_extrinsics_yaml, save_extrinsics_urdf


def main():
    parser = argparse.ArgumentParser(
        description='Compute eye extrinsics from recorded calibration samples'
    )

    parser.add_argument('--samples', type=str, required=True,
                       help='Path to samples YAML file')
    parser.add_argument('--config', type=str, default=None,
                       help='Path to PSO parameters YAML file (defaults if omitted)')
    parser.add_argument('--output', '-o', type=str, default='eye_extrinsics.yaml',
                       help='Output file path for extrinsics (default: eye_extrinsics.yaml)')
    parser.add_argument('--output-urdf', type=str, default=None,
                       help='Output URDF file path (optional)')
    parser.add_argument('--seed', type=int, default=None,
                       help='Random seed for a reproducible run')
    parser.add_argument('--max-iter', type=int, default=None,
                       help='Override the iteration cap')
    parser.add_argument('--max-time', type=float, default=None,
                       help='Override the wall-clock cap [s]')
    parser.add_argument('--verbose', '-v', action='store_true',
                       help='Verbose output')

    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')

    print("Loading configurations...")
    try:
        parameters = Parameters.from_yaml(args.config) if args.config else Parameters()
        if args.max_iter is not None:
            parameters.max_iter = args.max_iter
        if args.max_time is not None:
            parameters.max_t = args.max_time
        parameters.validate()

        calibration = EyesCalibration(parameters, seed=args.seed)
        load_samples_yaml(args.samples, calibration.data)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    print("\n" + "="*60)
    print("CALIBRATION DATA SUMMARY")
    print("="*60)
    stats = calibration.get_statistics()
    print(f"  Samples: {stats['num_samples']}")
    if stats['num_samples'] > 0:
        print(f"  Measured baseline: {stats['avg_baseline']:.4f} m "
              f"(std {stats['std_baseline']:.4f} m)")
    else:
        print("  WARNING: No samples loaded, the solution is unconstrained")

    print("\n" + "="*60)
    print("COMPUTING EYE EXTRINSICS")
    print("="*60)

    result = calibration.run_calibration()

    if not result.success:
        print("\nERROR: Calibration failed - no valid extrinsics computed")
        sys.exit(1)

    print("\n" + "="*60)
    print("CALIBRATION RESULTS")
    print("="*60)
    print(f"  Cost:       {result.cost:.6g}")
    print(f"  Iterations: {result.iterations}")
    print(f"  Time:       {result.elapsed:.3f} s")
    print(f"  Solution:   {np.array2string(result.solution, precision=5)}")

    extrinsics = {'left': result.extrinsics_left, 'right': result.extrinsics_right}
    for eye, T in extrinsics.items():
        t = T[:3, 3]
        print(f"\n{eye} eye:")
        print(f"  Translation: [{t[0]:.6f}, {t[1]:.6f}, {t[2]:.6f}] m")
        print(f"  Rotation:\n{np.array2string(T[:3, :3], precision=6, prefix='    ')}")

    print("\n" + "="*60)
    print("SAVING RESULTS")
    print("="*60)

    save_extrinsics_yaml(extrinsics, args.output, cost=result.cost)
    print(f"Saved extrinsics to {args.output}")

    if args.output_urdf:
        save_extrinsics_urdf(extrinsics, args.output_urdf)
        print(f"Saved URDF to {args.output_urdf}")

    print("\n✓ Calibration complete!")


if __name__ == '__main__':
    main()
