"""
Swarm: population management and generational PSO update.

Control flow expected from a driver:

    swarm = build_swarm(problem)        # or Swarm(config) + add_particle(...)
    swarm.init()
    for _ in range(config.num_generations):
        swarm.evolve()
        best = swarm.get_best()

All search-wide state (global best, generation counter, cost history) lives in
an explicit SwarmState owned by the swarm instance.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, List, Optional

import numpy as np

from .particle import Particle, RegistrationProblem, sample_initial_position
from .transform import RigidTransform
from ..exceptions import ConfigurationError, PreconditionViolation
from ..utils.config import RegistrationConfig
from ..utils.logging import setup_logger

if TYPE_CHECKING:
    from ..acceleration.parallel_executor import ParticleParallelExecutor

logger = setup_logger(__name__)


@dataclass
class SwarmState:
    best_position: Optional[np.ndarray] = None
    best_cost: float = float("inf")
    best_particle_id: Optional[int] = None
    generation: int = 0
    cost_history: List[float] = field(default_factory=list)

    def copy(self) -> "SwarmState":
        return replace(
            self,
            best_position=None if self.best_position is None else self.best_position.copy(),
            cost_history=list(self.cost_history),
        )


class Swarm:
    """Ordered particle population with global-best tracking."""

    def __init__(
        self,
        config: Optional[RegistrationConfig] = None,
        rng: Optional[np.random.Generator] = None,
        executor: Optional["ParticleParallelExecutor"] = None,
    ):
        """
        Args:
            config: Provides the PSO coefficients and reporting flags
            rng: Random source for velocity updates (default: seeded from config.seed)
            executor: Optional parallel executor for particle evaluations
        """
        self.config = config if config is not None else RegistrationConfig()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)
        self.executor = executor
        self._particles: List[Particle] = []
        self._state = SwarmState()
        self._initialized = False

    # ----------------- Population -----------------
    def add_particle(self, particle: Particle) -> int:
        """
        Append a particle and assign its id (insertion index).

        Raises:
            PreconditionViolation: If called after init()
        """
        if self._initialized:
            raise PreconditionViolation("Cannot add particles after the swarm has been initialized")
        particle.particle_id = len(self._particles)
        self._particles.append(particle)
        return particle.particle_id

    @property
    def particles(self) -> List[Particle]:
        return list(self._particles)

    def __len__(self) -> int:
        return len(self._particles)

    # ----------------- Lifecycle -----------------
    def init(self) -> float:
        """
        Evaluate every particle once and establish the initial global best.

        Returns:
            The initial global-best cost

        Raises:
            ConfigurationError: If the swarm has no particle
            PreconditionViolation: If the swarm was already initialized
        """
        if self._initialized:
            raise PreconditionViolation("Swarm is already initialized")
        if not self._particles:
            raise ConfigurationError("Cannot initialize a swarm without particles")

        logger.info("Initializing swarm with %d particles.", len(self._particles))
        self._evaluate_all()
        self._initialized = True
        self._update_global_best()
        if self.config.verbose:
            logger.info(self.report())
        return self._state.best_cost

    def evolve(self) -> float:
        """
        Run one generation: velocity, position, evaluation and bookkeeping.

        Every particle moves against the global best of the previous
        generation; the new global best is computed only after all particles
        were evaluated.

        Returns:
            The global-best cost after this generation

        Raises:
            PreconditionViolation: If init() has not run
        """
        if not self._initialized:
            raise PreconditionViolation("Swarm.evolve() called before Swarm.init()")

        cfg = self.config
        global_best = self._state.best_position.copy()
        for particle in self._particles:
            particle.update_velocity(global_best, cfg.inertia, cfg.cognitive, cfg.social, self.rng)
            particle.update_position()

        self._evaluate_all()

        self._update_global_best()
        self._state.generation += 1
        self._state.cost_history.append(self._state.best_cost)
        if cfg.verbose:
            logger.info(self.report())
        return self._state.best_cost

    def _evaluate_all(self) -> None:
        if self.executor is None:
            for particle in self._particles:
                particle.evaluate()
            return

        # Particles sharing a problem are dispatched together
        groups = {}
        for particle in self._particles:
            groups.setdefault(id(particle.problem), []).append(particle)
        for group in groups.values():
            results = self.executor.map_evaluations(group[0].problem, [p.position for p in group])
            for particle, (params, cost, n_inner) in zip(group, results):
                particle.apply_evaluation(params, cost, n_inner)

    def _update_global_best(self) -> None:
        best: Optional[Particle] = None
        for particle in self._particles:
            # Strict comparison keeps the lowest id on ties
            if best is None or particle.best_cost < best.best_cost:
                best = particle
        self._state.best_cost = best.best_cost
        self._state.best_position = best.best_position.copy()
        self._state.best_particle_id = best.particle_id

    # ----------------- Results -----------------
    def get_best(self) -> RigidTransform:
        """
        Copy of the global-best transform.

        Raises:
            PreconditionViolation: If init() has not run
        """
        if not self._initialized:
            raise PreconditionViolation("Swarm has no best transform before init()")
        return RigidTransform.from_params(self._state.best_position)

    @property
    def best_cost(self) -> float:
        return self._state.best_cost

    @property
    def generation(self) -> int:
        return self._state.generation

    @property
    def cost_history(self) -> List[float]:
        return list(self._state.cost_history)

    @property
    def state(self) -> SwarmState:
        return self._state.copy()

    @property
    def initialized(self) -> bool:
        return self._initialized

    def report(self) -> str:
        """
        One-line progress snapshot: generation, global best, mean and spread
        of the current (finite) particle costs.
        """
        costs = np.array([p.cost for p in self._particles], dtype=float)
        finite = costs[np.isfinite(costs)]
        if finite.size:
            mean, spread = float(np.mean(finite)), float(np.std(finite))
        else:
            mean, spread = float("nan"), float("nan")
        return (
            f"Generation {self._state.generation:>5d} | "
            f"best cost {self._state.best_cost:.6e} (particle {self._state.best_particle_id}) | "
            f"mean cost {mean:.6e} | std {spread:.6e} | "
            f"particles {len(self._particles)}"
        )

    def __str__(self) -> str:
        return self.report()


def build_swarm(
    problem: RegistrationProblem,
    rng: Optional[np.random.Generator] = None,
    executor: Optional["ParticleParallelExecutor"] = None,
) -> Swarm:
    """
    Create a swarm of ``problem.config.num_particles`` randomly initialized particles.

    The same generator samples the initial positions and drives the velocity
    updates, so a seeded generator makes the whole run reproducible.
    """
    cfg = problem.config
    rng = rng if rng is not None else np.random.default_rng(cfg.seed)
    swarm = Swarm(cfg, rng=rng, executor=executor)
    for _ in range(cfg.num_particles):
        swarm.add_particle(Particle(problem, position=sample_initial_position(problem, rng)))
    return swarm
