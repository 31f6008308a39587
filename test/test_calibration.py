#!/usr/bin/env python3
"""
Unit tests for transform utilities and calibration samples.
"""

import unittest
import numpy as np
import os
import sys
import tempfile

# Add package to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from scipy.spatial.transform import Rotation

from eyes_extrinsic_calibration.utils import (
    rpy_to_matrix,
    matrix_to_rpy,
    pose_to_matrix,
    matrix_to_pose,
    quaternion_from_matrix,
    matrix_from_quaternion,
    transform_to_matrix,
    matrix_to_transform,
    invert_transform,
    compose_transforms,
    load_yaml_config,
    save_extrinsics_yaml,
    load_extrinsics_yaml,
    save_extrinsics_urdf,
)
from eyes_extrinsic_calibration.calibration_data import (
    CalibrationSample,
    CalibrationDataStore,
    save_samples_yaml,
    load_samples_yaml,
    generate_samples,
)
from eyes_extrinsic_calibration.pso import get_extrinsics


def _rx(a):
    return np.array([[1, 0, 0], [0, np.cos(a), -np.sin(a)], [0, np.sin(a), np.cos(a)]])


def _ry(a):
    return np.array([[np.cos(a), 0, np.sin(a)], [0, 1, 0], [-np.sin(a), 0, np.cos(a)]])


def _rz(a):
    return np.array([[np.cos(a), -np.sin(a), 0], [np.sin(a), np.cos(a), 0], [0, 0, 1]])


class TestTransformUtils(unittest.TestCase):
    """Test transformation utility functions."""

    def test_rpy_convention(self):
        """RPY rotation is Rz(yaw) * Ry(pitch) * Rx(roll)."""
        roll, pitch, yaw = 0.3, -0.4, 1.2
        expected = _rz(yaw) @ _ry(pitch) @ _rx(roll)
        np.testing.assert_array_almost_equal(rpy_to_matrix([roll, pitch, yaw]), expected, decimal=10)

    def test_rpy_roundtrip(self):
        """Test rpy to matrix and back."""
        rpy = np.array([0.1, -0.2, 0.3])
        np.testing.assert_array_almost_equal(matrix_to_rpy(rpy_to_matrix(rpy)), rpy, decimal=10)

        pose = np.array([0.01, -0.02, 0.03, -2.5, 1.0, 3.0])
        np.testing.assert_array_almost_equal(matrix_to_pose(pose_to_matrix(pose)), pose, decimal=10)

    def test_matrix_to_rpy_stack(self):
        """Stacks of 4x4 matrices give one rpy row each."""
        poses = [[0, 0, 0, 0.1, 0.2, 0.3], [1, 2, 3, -0.3, 0.0, 2.0]]
        stack = np.stack([pose_to_matrix(p) for p in poses])
        rpy = matrix_to_rpy(stack)
        self.assertEqual(rpy.shape, (2, 3))
        np.testing.assert_array_almost_equal(rpy, np.array(poses)[:, 3:], decimal=10)

    def test_quaternion_roundtrip(self):
        """Test quaternion to matrix and back."""
        np.testing.assert_array_almost_equal(quaternion_from_matrix(np.eye(3)), [0, 0, 0, 1])

        R_random = Rotation.random(random_state=7).as_matrix()
        q = quaternion_from_matrix(R_random)
        self.assertGreaterEqual(q[3], 0.0)
        np.testing.assert_array_almost_equal(matrix_from_quaternion(q), R_random, decimal=6)

    def test_transform_roundtrip(self):
        """Test transform to matrix and back."""
        translation = np.array([1.0, 2.0, 3.0])
        quaternion = np.array([0.0, 0.0, 0.707, 0.707])
        quaternion = quaternion / np.linalg.norm(quaternion)

        T = transform_to_matrix(translation, quaternion)
        t_back, q_back = matrix_to_transform(T)

        np.testing.assert_array_almost_equal(translation, t_back, decimal=6)
        np.testing.assert_array_almost_equal(quaternion, q_back, decimal=6)

    def test_invert_transform(self):
        """Test transform inversion."""
        T = pose_to_matrix([1.0, 2.0, 3.0, 0.2, -0.5, 0.8])

        T_inv = invert_transform(T)

        np.testing.assert_array_almost_equal(compose_transforms(T, T_inv), np.eye(4), decimal=10)
        np.testing.assert_array_almost_equal(T_inv, np.linalg.inv(T), decimal=10)

    def test_invert_transform_stack(self):
        """Stacked inversion matches inverting one at a time."""
        stack = np.stack([pose_to_matrix([0.1, 0.0, -0.2, 0.3, 0.1, -1.0]),
                          pose_to_matrix([0.0, 0.5, 0.0, -1.0, 0.4, 2.0])])
        inv = invert_transform(stack)
        for T, T_inv in zip(stack, inv):
            np.testing.assert_array_almost_equal(T_inv, invert_transform(T), decimal=12)
            np.testing.assert_array_almost_equal(T_inv[3], [0, 0, 0, 1])

    def test_compose_transforms(self):
        """Test transform composition."""
        T1 = np.eye(4)
        T1[:3, 3] = [1.0, 0.0, 0.0]

        T2 = np.eye(4)
        T2[:3, 3] = [0.0, 1.0, 0.0]

        T_composed = compose_transforms(T1, T2)

        np.testing.assert_array_almost_equal(T_composed[:3, 3], [1.0, 1.0, 0.0], decimal=6)


class TestConfigFiles(unittest.TestCase):
    """Test YAML loading and extrinsics export."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmpdir.cleanup()

    def _path(self, name):
        return os.path.join(self.tmpdir.name, name)

    def test_load_missing_config(self):
        """Missing files raise FileNotFoundError."""
        with self.assertRaises(FileNotFoundError):
            load_yaml_config(self._path('missing.yaml'))

    def test_load_empty_config(self):
        """An empty YAML file is an empty configuration."""
        path = self._path('empty.yaml')
        open(path, 'w').close()
        self.assertEqual(load_yaml_config(path), {})

    def test_load_non_mapping_config(self):
        """A YAML list at top level is rejected."""
        path = self._path('list.yaml')
        with open(path, 'w') as f:
            f.write('- 1\n- 2\n')
        with self.assertRaises(ValueError):
            load_yaml_config(path)

    def test_extrinsics_yaml_roundtrip(self):
        """Saved extrinsics load back to the same matrices."""
        Hl, Hr = get_extrinsics([0.03, -0.01, 0.02, 0.1, -0.05, 0.2])
        path = self._path('extrinsics.yaml')

        save_extrinsics_yaml({'left': Hl, 'right': Hr}, path, cost=0.0123)
        loaded = load_extrinsics_yaml(path)

        self.assertEqual(sorted(loaded.keys()), ['left', 'right'])
        np.testing.assert_array_almost_equal(loaded['left'], Hl, decimal=5)
        np.testing.assert_array_almost_equal(loaded['right'], Hr, decimal=5)

        with open(path) as f:
            self.assertIn('# Calibration cost: 0.0123', f.read())

    def test_load_malformed_extrinsics(self):
        """Entries without a 7-element value are rejected."""
        path = self._path('bad.yaml')
        with open(path, 'w') as f:
            f.write('left:\n  value: [1, 2, 3]\n')
        with self.assertRaises(ValueError):
            load_extrinsics_yaml(path)

    def test_extrinsics_urdf(self):
        """URDF export writes one fixed joint per eye."""
        Hl, Hr = get_extrinsics([0.0, 0.0, 0.0, 0.0, 0.0, 0.1])
        path = self._path('eyes.urdf')

        save_extrinsics_urdf({'left': Hl, 'right': Hr}, path)

        with open(path) as f:
            content = f.read()
        self.assertEqual(content.count('type="fixed"'), 2)
        self.assertIn('<child link="left_camera"/>', content)
        self.assertIn(' -0.100000"/>', content)
        self.assertIn(' 0.100000"/>', content)


class TestCalibrationData(unittest.TestCase):
    """Test the calibration sample store."""

    def test_add_sample_returns_stored_record(self):
        """add_sample appends an identity sample the caller can fill in."""
        store = CalibrationDataStore()
        sample = store.add_sample()

        self.assertEqual(len(store), 1)
        self.assertIs(store[0], sample)
        np.testing.assert_array_equal(sample.fundamental, np.eye(4))

        sample.fundamental = pose_to_matrix([0.06, 0, 0, 0, 0, 0])
        np.testing.assert_array_almost_equal(store[0].fundamental[:3, 3], [0.06, 0, 0])

    def test_append_is_frozen(self):
        """Fully specified samples cannot be modified after appending."""
        store = CalibrationDataStore()
        sample = store.append(np.eye(4), np.eye(4), np.eye(4))

        with self.assertRaises(ValueError):
            sample.fundamental[0, 3] = 1.0

    def test_append_validates(self):
        """Malformed transforms are rejected."""
        store = CalibrationDataStore()
        with self.assertRaises(ValueError):
            store.append(np.eye(3), np.eye(4), np.eye(4))

        bad = np.eye(4)
        bad[0, 3] = np.nan
        with self.assertRaises(ValueError):
            store.append(np.eye(4), np.eye(4), bad)

        self.assertEqual(len(store), 0)

    def test_as_arrays(self):
        """Samples stack into (N, 4, 4) arrays in insertion order."""
        store = CalibrationDataStore()
        left, right, fundamental = store.as_arrays()
        self.assertEqual(left.shape, (0, 4, 4))

        for i in range(3):
            store.append(pose_to_matrix([i, 0, 0, 0, 0, 0]), np.eye(4), np.eye(4))

        left, right, fundamental = store.as_arrays()
        self.assertEqual(left.shape, (3, 4, 4))
        np.testing.assert_array_equal(left[:, 0, 3], [0, 1, 2])

    def test_clear(self):
        store = CalibrationDataStore()
        store.add_sample()
        store.clear()
        self.assertEqual(len(store), 0)

    def test_samples_yaml_roundtrip(self):
        """Samples saved to YAML load back unchanged."""
        Hl, Hr = get_extrinsics([0.01, 0.0, 0.0, 0.0, 0.0, 0.05])
        store = generate_samples(Hl, Hr, 4, rng=np.random.default_rng(3))

        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'samples.yaml')
            save_samples_yaml(store, path)
            loaded = load_samples_yaml(path)

        self.assertEqual(len(loaded), 4)
        for a, b in zip(store, loaded):
            np.testing.assert_array_almost_equal(a.eye_kin_left, b.eye_kin_left, decimal=12)
            np.testing.assert_array_almost_equal(a.eye_kin_right, b.eye_kin_right, decimal=12)
            np.testing.assert_array_almost_equal(a.fundamental, b.fundamental, decimal=12)

    def test_load_samples_missing_key(self):
        """Samples without all three transforms are rejected."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, 'samples.yaml')
            with open(path, 'w') as f:
                f.write('samples:\n  - eye_kin_left: [[1, 0, 0, 0], [0, 1, 0, 0], [0, 0, 1, 0], [0, 0, 0, 1]]\n')
            with self.assertRaises(ValueError):
                load_samples_yaml(path)

    def test_load_samples_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_samples_yaml('/nonexistent/samples.yaml')

    def test_generated_samples_are_consistent(self):
        """Noise-free samples satisfy the fundamental relation exactly."""
        Hl, Hr = get_extrinsics([0.02, -0.01, 0.005, 0.05, -0.03, 0.1])
        store = generate_samples(Hl, Hr, 10, rng=np.random.default_rng(0))

        self.assertEqual(len(store), 10)
        for sample in store:
            D = invert_transform(sample.eye_kin_right @ Hr) @ (sample.eye_kin_left @ Hl)
            np.testing.assert_array_almost_equal(D, sample.fundamental, decimal=10)

    def test_generated_samples_with_noise(self):
        """Noise perturbs the fundamental but keeps it a rigid transform."""
        Hl, Hr = get_extrinsics(np.zeros(6))
        store = generate_samples(Hl, Hr, 5, rng=np.random.default_rng(1),
                                 translation_noise=1e-3, rotation_noise=1e-3)
        for sample in store:
            D = invert_transform(sample.eye_kin_right @ Hr) @ (sample.eye_kin_left @ Hl)
            self.assertGreater(np.abs(D - sample.fundamental).max(), 0.0)
            R = sample.fundamental[:3, :3]
            np.testing.assert_array_almost_equal(R @ R.T, np.eye(3), decimal=10)

    def test_sample_defaults_are_independent(self):
        """Default transforms are not shared between samples."""
        a = CalibrationSample()
        b = CalibrationSample()
        a.eye_kin_left[0, 3] = 1.0
        self.assertEqual(b.eye_kin_left[0, 3], 0.0)


if __name__ == '__main__':
    unittest.main()
