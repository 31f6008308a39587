"""
Calibration samples consumed by the eye extrinsics optimizer.

Each sample pairs the kinematic poses of the two eyes at the time of an
observation with the relative pose measured between the two camera
views (the "fundamental" relation).
"""

import numpy as np
import yaml
import os
from typing import Iterator, List, Optional, Tuple
from dataclasses import dataclass, field

from .utils import (
    pose_to_matrix, invert_transform, compose_transforms, matrix_to_pose
)


def _identity() -> np.ndarray:
    return np.eye(4)


@dataclass
class CalibrationSample:
    """A single observation used to fit the eye extrinsics."""
    eye_kin_left: np.ndarray = field(default_factory=_identity)   # 4x4 left eye kinematics
    eye_kin_right: np.ndarray = field(default_factory=_identity)  # 4x4 right eye kinematics
    fundamental: np.ndarray = field(default_factory=_identity)    # 4x4 observed left->right pose

    def validate(self):
        """Raise ValueError unless all transforms are finite 4x4 matrices."""
        for name in ('eye_kin_left', 'eye_kin_right', 'fundamental'):
            value = np.asarray(getattr(self, name), dtype=float)
            if value.shape != (4, 4):
                raise ValueError(f"{name} must be 4x4, got shape {value.shape}")
            if not np.all(np.isfinite(value)):
                raise ValueError(f"{name} contains non-finite values")

    def freeze(self):
        """Make the stored transforms read-only."""
        for name in ('eye_kin_left', 'eye_kin_right', 'fundamental'):
            value = np.array(getattr(self, name), dtype=float)
            value.setflags(write=False)
            setattr(self, name, value)

    def to_dict(self) -> dict:
        return {
            'eye_kin_left': np.asarray(self.eye_kin_left).tolist(),
            'eye_kin_right': np.asarray(self.eye_kin_right).tolist(),
            'fundamental': np.asarray(self.fundamental).tolist(),
        }


class CalibrationDataStore:
    """
    Append-only, ordered collection of calibration samples.

    Samples are shared read-only by every particle during optimization,
    so the store must not be mutated while a calibration is running.
    """

    def __init__(self):
        self._samples: List[CalibrationSample] = []

    def add_sample(self) -> CalibrationSample:
        """
        Append an identity-initialised sample and return it.

        The caller populates the returned record in place.
        """
        sample = CalibrationSample()
        self._samples.append(sample)
        return sample

    def append(self, eye_kin_left: np.ndarray, eye_kin_right: np.ndarray,
               fundamental: np.ndarray) -> CalibrationSample:
        """Append a fully specified sample; it is validated and frozen."""
        sample = CalibrationSample(
            eye_kin_left=np.array(eye_kin_left, dtype=float),
            eye_kin_right=np.array(eye_kin_right, dtype=float),
            fundamental=np.array(fundamental, dtype=float),
        )
        sample.validate()
        sample.freeze()
        self._samples.append(sample)
        return sample

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[CalibrationSample]:
        return iter(self._samples)

    def __getitem__(self, index: int) -> CalibrationSample:
        return self._samples[index]

    def clear(self):
        """Drop all samples, e.g. to start a new calibration session."""
        self._samples.clear()

    def as_arrays(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Stack samples into (N, 4, 4) arrays.

        Returns:
            Tuple of (eye_kin_left, eye_kin_right, fundamental)
        """
        if not self._samples:
            empty = np.empty((0, 4, 4))
            return empty, empty.copy(), empty.copy()

        return (
            np.stack([np.asarray(s.eye_kin_left, dtype=float) for s in self._samples]),
            np.stack([np.asarray(s.eye_kin_right, dtype=float) for s in self._samples]),
            np.stack([np.asarray(s.fundamental, dtype=float) for s in self._samples]),
        )


def save_samples_yaml(store: CalibrationDataStore, output_path: str):
    """Save all samples of a store as a YAML list."""
    data = {'samples': [sample.to_dict() for sample in store]}
    with open(output_path, 'w') as f:
        yaml.safe_dump(data, f, default_flow_style=None, sort_keys=False)


def load_samples_yaml(path: str, store: Optional[CalibrationDataStore] = None) -> CalibrationDataStore:
    """
    Load samples from a YAML file written by save_samples_yaml.

    Args:
        path: YAML file path
        store: Existing store to append to (a new one is created if None)

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If a sample is missing a transform or is malformed
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Samples file not found: {path}")

    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}

    entries = data.get('samples', []) if isinstance(data, dict) else data
    if not isinstance(entries, list):
        raise ValueError(f"'samples' in {path} must be a list")

    if store is None:
        store = CalibrationDataStore()

    for i, entry in enumerate(entries):
        missing = [k for k in ('eye_kin_left', 'eye_kin_right', 'fundamental')
                   if not isinstance(entry, dict) or k not in entry]
        if missing:
            raise ValueError(f"Sample {i} is missing: {', '.join(missing)}")
        try:
            store.append(entry['eye_kin_left'], entry['eye_kin_right'], entry['fundamental'])
        except ValueError as e:
            raise ValueError(f"Sample {i}: {e}") from e

    return store


def generate_samples(extrinsics_left: np.ndarray, extrinsics_right: np.ndarray,
                     num_samples: int,
                     rng: Optional[np.random.Generator] = None,
                     translation_noise: float = 0.0,
                     rotation_noise: float = 0.0,
                     store: Optional[CalibrationDataStore] = None) -> CalibrationDataStore:
    """
    Synthesize samples consistent with a known pair of eye extrinsics.

    Eye kinematic poses are drawn at random (small translations, joint-like
    rotations); the fundamental is the exact relative pose
    inv(Kr * Hr) * (Kl * Hl), optionally perturbed with Gaussian noise.

    Args:
        extrinsics_left: 4x4 ground-truth left extrinsics
        extrinsics_right: 4x4 ground-truth right extrinsics
        num_samples: Number of samples to generate
        rng: Random generator (a fresh one is created if None)
        translation_noise: Std. dev. of translation noise [m]
        rotation_noise: Std. dev. of rpy noise [rad]
        store: Existing store to append to
    """
    if rng is None:
        rng = np.random.default_rng()
    if store is None:
        store = CalibrationDataStore()

    for _ in range(num_samples):
        # vergence/version of the eyes plus a shared head pose
        head = rng.uniform([-0.05, -0.05, -0.05, -0.3, -0.3, -0.3],
                           [0.05, 0.05, 0.05, 0.3, 0.3, 0.3])
        left = head + np.concatenate([[0.0, 0.034, 0.0], rng.uniform(-0.2, 0.2, 3)])
        right = head + np.concatenate([[0.0, -0.034, 0.0], rng.uniform(-0.2, 0.2, 3)])
        K_left = pose_to_matrix(left)
        K_right = pose_to_matrix(right)

        D = compose_transforms(invert_transform(compose_transforms(K_right, extrinsics_right)),
                               compose_transforms(K_left, extrinsics_left))

        if translation_noise > 0.0 or rotation_noise > 0.0:
            pose = matrix_to_pose(D)
            pose[:3] += rng.normal(0.0, translation_noise, 3) if translation_noise > 0.0 else 0.0
            pose[3:] += rng.normal(0.0, rotation_noise, 3) if rotation_noise > 0.0 else 0.0
            D = pose_to_matrix(pose)

        store.append(K_left, K_right, D)

    return store
