"""
Extrinsic calibration solver for the two eye cameras of a robot head.
Fits the eye extrinsics to accumulated stereo measurements with a
particle swarm.
"""

import logging
import time
import numpy as np
from typing import Optional
from dataclasses import dataclass, field

from .calibration_data import CalibrationDataStore, CalibrationSample
from .pso import Optimizer, Parameters, get_extrinsics

logger = logging.getLogger(__name__)


@dataclass
class CalibrationResult:
    """Result of an eye extrinsics calibration run."""
    success: bool
    cost: float = float('inf')
    extrinsics_left: Optional[np.ndarray] = None   # 4x4 left eye extrinsics
    extrinsics_right: Optional[np.ndarray] = None  # 4x4 right eye extrinsics
    solution: np.ndarray = field(default_factory=lambda: np.zeros(6))  # [x, y, z, roll, pitch, yaw]
    iterations: int = 0
    elapsed: float = 0.0                           # wall-clock time [s]
    num_samples: int = 0


class EyesCalibration:
    """
    Calibration session for the eye extrinsics.

    Samples are appended while the head explores its workspace; once
    enough are collected, run_calibration() fits the extrinsics.
    """

    def __init__(self, parameters: Optional[Parameters] = None,
                 seed: Optional[int] = None):
        """
        Args:
            parameters: Swarm parameters used for every run
            seed: Seed for the random generator; None draws fresh entropy
                  on each run
        """
        self.parameters = parameters if parameters is not None else Parameters()
        self.seed = seed
        self.data = CalibrationDataStore()

    def add_data(self) -> CalibrationSample:
        """Append an empty sample and return it for the caller to fill in."""
        return self.data.add_sample()

    def add_sample(self, eye_kin_left: np.ndarray, eye_kin_right: np.ndarray,
                   fundamental: np.ndarray) -> CalibrationSample:
        return self.data.append(eye_kin_left, eye_kin_right, fundamental)

    def clear_data(self):
        """Clear all collected calibration data."""
        self.data.clear()

    def run_calibration(self) -> CalibrationResult:
        """
        Run the swarm to termination and convert its best pose to
        left and right extrinsics.
        """
        for sample in self.data:
            sample.validate()

        rng = np.random.default_rng(self.seed)
        swarm = Optimizer(self.data, parameters=self.parameters, rng=rng)
        swarm.init()

        yield_period = swarm.parameters.yield_period
        cnt = 0
        t0 = time.monotonic()
        try:
            while swarm.step():
                cnt += 1
                if cnt >= yield_period:
                    # let other threads of the host process run
                    time.sleep(0)
                    cnt = 0
        finally:
            # also on errors and interrupts, so worker threads are joined
            t = time.monotonic() - t0
            g = swarm.finalize()

        solution = np.array2string(g.pos, precision=5, floatmode='fixed')
        logger.info(f"solution: {solution} found in {t:.3f} [s]")

        extrinsics = get_extrinsics(g.pos)
        if extrinsics is None:
            logger.error("Could not compute extrinsics from the solution")
            return CalibrationResult(success=False, cost=g.cost, solution=g.pos,
                                     iterations=swarm.iteration, elapsed=t,
                                     num_samples=len(self.data))

        extrinsics_left, extrinsics_right = extrinsics
        return CalibrationResult(
            success=True,
            cost=g.cost,
            extrinsics_left=extrinsics_left,
            extrinsics_right=extrinsics_right,
            solution=g.pos,
            iterations=swarm.iteration,
            elapsed=t,
            num_samples=len(self.data)
        )

    def get_statistics(self) -> dict:
        """Get statistics about collected calibration data."""
        if len(self.data) == 0:
            return {'num_samples': 0}

        _, _, fundamental = self.data.as_arrays()
        baselines = np.linalg.norm(fundamental[:, :3, 3], axis=1)
        return {
            'num_samples': len(self.data),
            'avg_baseline': float(np.mean(baselines)),
            'std_baseline': float(np.std(baselines)),
        }
