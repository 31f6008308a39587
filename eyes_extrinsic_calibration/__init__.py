# eyes_extrinsic_calibration package
"""
Extrinsic calibration of a robot's two eye cameras.

This package fits the left and right eye extrinsics to stereo
measurements collected while the eyes move, using a particle swarm
optimizer over a mirrored 6D pose.
"""

from .calibration_data import CalibrationSample, CalibrationDataStore, load_samples_yaml, save_samples_yaml
from .calibration_solver import EyesCalibration, CalibrationResult
from .pso import Optimizer, Parameters, Particle, get_extrinsics

__all__ = [
    'CalibrationSample',
    'CalibrationDataStore',
    'load_samples_yaml',
    'save_samples_yaml',
    'EyesCalibration',
    'CalibrationResult',
    'Optimizer',
    'Parameters',
    'Particle',
    'get_extrinsics',
]
