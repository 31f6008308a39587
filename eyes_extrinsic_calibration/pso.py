"""
Particle swarm optimizer for the extrinsics of the two eye cameras.

The search space is a single 6D pose [x, y, z, roll, pitch, yaw]: the
right eye extrinsics are built from it directly, the left eye ones from
its mirror image about the sagittal plane (x and yaw negated).
"""

import copy
import enum
import logging
import math
import time
import numpy as np
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass, field, fields

from .calibration_data import CalibrationDataStore
from .utils import load_yaml_config, matrix_to_rpy, invert_transform, rpy_to_matrix

logger = logging.getLogger(__name__)

DEG2RAD = math.pi / 180.0
POSE_DIM = 6


def default_bounds() -> np.ndarray:
    """Per-dimension [min, max] search bounds."""
    return np.array([
        # translation [m]
        [-0.1, 0.1],
        [-0.1, 0.1],
        [-0.1, 0.1],
        # orientation rpy [rad]
        [-math.pi, math.pi],
        [-math.pi / 2.0, math.pi / 2.0],
        [-math.pi, math.pi],
    ])


# camelCase names accepted for compatibility with existing configuration files
_PARAMETER_ALIASES = {
    'numParticles': 'num_particles',
    'maxIter': 'max_iter',
    'maxT': 'max_t',
    'cost': 'cost_threshold',
    'costThreshold': 'cost_threshold',
    'lim': 'bounds',
}


@dataclass
class Parameters:
    """Tuning parameters of the swarm; mutable until Optimizer.init()."""
    num_particles: int = 20
    max_iter: float = math.inf
    max_t: float = math.inf                     # wall-clock cap [s]
    omega: float = 0.8                          # inertia
    phi_p: float = 0.1                          # personal-best attraction
    phi_g: float = 0.1                          # global-best attraction
    cost_threshold: float = 0.0
    bounds: np.ndarray = field(default_factory=default_bounds)
    regularization_weight: float = 0.1          # penalty on extrinsic translation norm
    translation_velocity: float = 1e-4          # initial velocity range [m]
    rotation_velocity: float = 1.0 * DEG2RAD    # initial velocity range [rad]
    stagnation_period: int = 100
    stagnation_threshold: float = 0.005
    log_period: int = 10
    yield_period: int = 10
    num_workers: int = 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Parameters':
        """
        Build parameters from a dictionary.

        Both snake_case field names and the camelCase names numParticles,
        maxIter, maxT and costThreshold are recognised.

        Raises:
            ValueError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in data.items():
            name = _PARAMETER_ALIASES.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown PSO parameter: {key}")
            kwargs[name] = value

        if 'bounds' in kwargs:
            kwargs['bounds'] = np.array(kwargs['bounds'], dtype=float)
        for name in ('max_iter', 'max_t'):
            if name in kwargs and kwargs[name] is None:
                kwargs[name] = math.inf

        parameters = cls(**kwargs)
        parameters.validate()
        return parameters

    @classmethod
    def from_yaml(cls, path: str) -> 'Parameters':
        """Load parameters from YAML, optionally nested under a 'pso' key."""
        data = load_yaml_config(path)
        if isinstance(data.get('pso'), dict):
            data = data['pso']
        return cls.from_dict(data)

    def validate(self):
        """Raise ValueError if the parameters cannot drive a run."""
        bounds = np.asarray(self.bounds, dtype=float)
        if bounds.shape != (POSE_DIM, 2):
            raise ValueError(f"bounds must be {POSE_DIM}x2, got shape {bounds.shape}")
        if np.any(bounds[:, 0] > bounds[:, 1]):
            raise ValueError("bounds min must not exceed max")
        if int(self.num_particles) != self.num_particles or self.num_particles < 1:
            raise ValueError("num_particles must be a positive integer")
        if self.max_iter < 0 or self.max_t < 0:
            raise ValueError("max_iter and max_t must be non-negative")
        for name in ('omega', 'phi_p', 'phi_g', 'regularization_weight',
                     'translation_velocity', 'rotation_velocity', 'stagnation_threshold'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        for name in ('stagnation_period', 'log_period', 'yield_period', 'num_workers'):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")


@dataclass
class Particle:
    """A candidate pose with its velocity and last evaluated cost."""
    pos: np.ndarray = field(default_factory=lambda: np.zeros(POSE_DIM))
    vel: np.ndarray = field(default_factory=lambda: np.zeros(POSE_DIM))
    cost: float = math.inf

    def copy(self) -> 'Particle':
        return Particle(pos=self.pos.copy(), vel=self.vel.copy(), cost=self.cost)


class OptimizerState(enum.Enum):
    UNINITIALIZED = 'uninitialized'
    INITIALIZED = 'initialized'
    STEPPING = 'stepping'
    TERMINATED = 'terminated'


def periodic_dims(bounds) -> np.ndarray:
    """
    Mask of the orientation dimensions whose bounds cover a full turn.

    Such angles live on a circle: -pi and pi are the same orientation, so
    positions wrap around instead of being clamped.
    """
    bounds = np.asarray(bounds, dtype=float)
    mask = np.zeros(POSE_DIM, dtype=bool)
    mask[3:] = (bounds[3:, 1] - bounds[3:, 0]) >= 2.0 * math.pi - 1e-9
    return mask


def pose_difference(a, b, periodic=None) -> np.ndarray:
    """a - b, with the periodic components wrapped into [-pi, pi)."""
    d = np.asarray(a, dtype=float) - np.asarray(b, dtype=float)
    if periodic is not None:
        d = np.where(periodic, np.mod(d + math.pi, 2.0 * math.pi) - math.pi, d)
    return d


def get_extrinsics(x) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    """
    Map a 6D pose to the left and right eye extrinsics.

    Args:
        x: [x, y, z, roll, pitch, yaw]

    Returns:
        Tuple (Hl, Hr) of 4x4 matrices, or None if x has fewer than
        6 components
    """
    x = np.asarray(x, dtype=float).ravel()
    if x.size < POSE_DIM:
        return None

    Hr = np.eye(4)
    Hr[:3, :3] = rpy_to_matrix(x[3:6])
    Hr[:3, 3] = x[0:3]

    y = x.copy()
    y[0] = -y[0]
    y[5] = -y[5]
    Hl = np.eye(4)
    Hl[:3, :3] = rpy_to_matrix(y[3:6])
    Hl[:3, 3] = y[0:3]

    return Hl, Hr


class Optimizer:
    """
    Particle swarm over the eye extrinsics pose.

    Usage:
        optimizer = Optimizer(store, rng=np.random.default_rng(0))
        optimizer.parameters.max_iter = 1000
        optimizer.init()
        while optimizer.step():
            pass
        best = optimizer.finalize()

    Personal and global bests are value copies, never references into
    the live swarm.
    """

    def __init__(self, data: CalibrationDataStore,
                 parameters: Optional[Parameters] = None,
                 rng: Optional[np.random.Generator] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Args:
            data: Calibration samples, read-only during the run
            parameters: Swarm parameters (defaults if None)
            rng: Random source; seed it for reproducible runs
            clock: Monotonic clock in seconds used for the time cap
        """
        self.data = data
        self.parameters = parameters if parameters is not None else Parameters()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.clock = clock

        self.particles: List[Particle] = []
        self.personal_best: List[Particle] = []
        self.global_best = Particle()

        self.iteration = 0
        self.elapsed = 0.0
        self.scattered = False
        self.state = OptimizerState.UNINITIALIZED
        # global best position at the last stagnation check
        self.checked_best_pos = np.zeros(POSE_DIM)

        self._params: Optional[Parameters] = None
        self._periodic = np.zeros(POSE_DIM, dtype=bool)
        self._t0 = 0.0
        self._executor: Optional[ThreadPoolExecutor] = None
        self._samples = None

    def get_extrinsics(self, x) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        return get_extrinsics(x)

    def _sample_arrays(self):
        kin_left, kin_right, fundamental = self.data.as_arrays()
        fund_rpy = matrix_to_rpy(fundamental) if len(fundamental) > 0 else np.empty((0, 3))
        return kin_left, kin_right, fundamental[:, :3, 3], fund_rpy

    def cost(self, pos: np.ndarray) -> float:
        """
        Mean per-sample cost of a pose; 0 when there are no samples.

        Before init() the store is read on every call. From init() on the
        store is frozen for the run and its arrays are reused.
        """
        samples = self._samples if self._samples is not None else self._sample_arrays()
        kin_left, kin_right, fund_translation, fund_rpy = samples

        n = len(kin_left)
        if n == 0:
            return 0.0

        params = self._params if self._params is not None else self.parameters
        Hl, Hr = get_extrinsics(pos)

        Hl_ = kin_left @ Hl
        Hr_ = kin_right @ Hr
        D = invert_transform(Hr_) @ Hl_

        total = np.sum(np.linalg.norm(fund_translation - D[:, :3, 3], axis=1))
        total += np.sum(np.linalg.norm(fund_rpy - matrix_to_rpy(D), axis=1))
        total += n * params.regularization_weight * np.linalg.norm(np.asarray(pos)[0:3])

        return float(total / n)

    def evaluate(self, particle: Particle) -> float:
        """Score a particle's position, store the result in particle.cost."""
        particle.cost = self.cost(particle.pos)
        return particle.cost

    def randomize(self):
        """Scatter all particles uniformly over the bounds with small velocities."""
        params = self._params
        bounds = np.asarray(params.bounds, dtype=float)
        for particle in self.particles:
            particle.pos = self.rng.uniform(bounds[:, 0], bounds[:, 1])
            particle.vel = np.concatenate([
                self.rng.uniform(-params.translation_velocity, params.translation_velocity, 3),
                self.rng.uniform(-params.rotation_velocity, params.rotation_velocity, 3),
            ])

    def init(self):
        """Create the swarm, evaluate it and start the clock."""
        self.parameters.validate()
        self._params = copy.deepcopy(self.parameters)
        self._params.bounds = np.asarray(self._params.bounds, dtype=float)
        self._periodic = periodic_dims(self._params.bounds)
        self._samples = self._sample_arrays()

        self.particles = [Particle() for _ in range(int(self._params.num_particles))]
        self.randomize()
        self.personal_best = [particle.copy() for particle in self.particles]

        self.global_best = Particle()
        for best in self.personal_best:
            if self.evaluate(best) < self.global_best.cost:
                self.global_best = best.copy()

        self._shutdown_executor()
        if self._params.num_workers > 1:
            self._executor = ThreadPoolExecutor(max_workers=self._params.num_workers)

        self.iteration = 0
        self.scattered = False
        self.checked_best_pos = self.global_best.pos.copy()
        self._t0 = self.clock()
        self.elapsed = 0.0
        self.state = OptimizerState.INITIALIZED

    def _move(self, i: int):
        params = self._params
        particle = self.particles[i]
        r1 = self.rng.random(POSE_DIM)
        r2 = self.rng.random(POSE_DIM)

        to_personal = pose_difference(self.personal_best[i].pos, particle.pos, self._periodic)
        to_global = pose_difference(self.global_best.pos, particle.pos, self._periodic)
        particle.vel = (params.omega * particle.vel +
                        params.phi_p * r1 * to_personal +
                        params.phi_g * r2 * to_global)

        lo, hi = params.bounds[:, 0], params.bounds[:, 1]
        pos = particle.pos + particle.vel
        wrapped = lo + np.mod(pos - lo, 2.0 * math.pi)
        particle.pos = np.where(self._periodic, wrapped, np.clip(pos, lo, hi))

    def _update_bests(self, i: int, cost: float):
        if cost < self.personal_best[i].cost:
            self.personal_best[i] = self.particles[i].copy()
            self.personal_best[i].cost = cost
            if cost < self.global_best.cost:
                self.global_best = self.personal_best[i].copy()

    def _distance(self, a: np.ndarray, b: np.ndarray) -> float:
        return float(np.linalg.norm(pose_difference(a, b, self._periodic)))

    def _is_stagnating(self) -> bool:
        """
        The swarm stagnates when it has collapsed onto the global best, or
        when the global best has not moved since the previous check while
        part of the swarm keeps circling other optima.
        """
        if not self.particles:
            return False
        threshold = self._params.stagnation_threshold
        mean = np.mean([self._distance(self.global_best.pos, particle.pos)
                        for particle in self.particles])
        if mean < threshold:
            return True
        return self._distance(self.global_best.pos, self.checked_best_pos) < threshold

    def step(self) -> bool:
        """
        Run one generation of the swarm.

        Returns:
            True while the swarm should keep iterating, False once the
            iteration cap, the cost threshold or the time cap is reached
        """
        if self.state in (OptimizerState.UNINITIALIZED, OptimizerState.TERMINATED):
            raise RuntimeError(f"step() called on a {self.state.value} optimizer; call init() first")

        params = self._params
        self.state = OptimizerState.STEPPING
        self.iteration += 1

        if self._executor is None:
            for i in range(len(self.particles)):
                self._move(i)
                self._update_bests(i, self.evaluate(self.particles[i]))
        else:
            # all moves first, then a barrier before any best is updated
            for i in range(len(self.particles)):
                self._move(i)
            costs = list(self._executor.map(self.evaluate, self.particles))
            for i, cost in enumerate(costs):
                self._update_bests(i, cost)

        self.scattered = False
        if self.iteration % params.stagnation_period == 0:
            if self._is_stagnating():
                self.randomize()
                self.scattered = True
            self.checked_best_pos = self.global_best.pos.copy()

        self.elapsed = self.clock() - self._t0
        keep_going = (self.iteration < params.max_iter and
                      self.global_best.cost > params.cost_threshold and
                      self.elapsed < params.max_t)

        if self.iteration % params.log_period == 0:
            self._log_progress()

        return keep_going

    def _log_progress(self):
        params = self._params if self._params is not None else self.parameters
        msg = (f"iter #{self.iteration} t={self.elapsed:.3f} [s]: "
               f"cost={self.global_best.cost:g} ({params.cost_threshold:g}); ")
        if self.scattered:
            msg += "particles scattered away"
        logger.info(msg)

    def finalize(self) -> Particle:
        """Stop the run and return a copy of the best particle found."""
        self._log_progress()
        self._shutdown_executor()
        self.state = OptimizerState.TERMINATED
        return self.global_best.copy()

    def _shutdown_executor(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
