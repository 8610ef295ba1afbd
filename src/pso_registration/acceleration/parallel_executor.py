"""
Parallel execution infrastructure for particle evaluation.

Provides ParticleParallelExecutor for distributing the evaluations of one
swarm generation across multiple CPU cores using multiprocessing.
"""

from __future__ import annotations

import time
from multiprocessing import Pool, cpu_count
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from ..alignment.particle import RegistrationProblem, evaluate_position
from ..utils.logging import setup_logger

logger = setup_logger(__name__)

# Problem installed in each worker process by the pool initializer
_WORKER_PROBLEM: Optional[RegistrationProblem] = None


def _init_worker(problem: RegistrationProblem) -> None:
    global _WORKER_PROBLEM
    _WORKER_PROBLEM = problem


def _worker_wrapper(args: Tuple[int, np.ndarray]) -> Tuple[int, Any, Optional[str]]:
    """
    Worker wrapper function for parallel particle evaluation.

    Must be at module level for pickling on Windows.

    Args:
        args: Tuple of (particle_index, position)

    Returns:
        Tuple of (particle_index, result, error_message)
    """
    idx, position = args
    try:
        result = evaluate_position(_WORKER_PROBLEM, position)
        return (idx, result, None)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {str(e)}"
        logger.error(f"Worker error on particle {idx}: {error_msg}")
        return (idx, None, error_msg)


class ParticleParallelExecutor:
    """
    Parallel executor for particle evaluations.

    Each generation is a map over the particle population followed by a
    barrier: ``map_evaluations`` only returns once every evaluation finished,
    with results in the same order as the input positions. The worker pool is
    created lazily for a problem and reused across generations.

    Example:
        with ParticleParallelExecutor(n_workers=4) as executor:
            swarm = Swarm(config, executor=executor)
            ...
    """

    def __init__(self, n_workers: Optional[int] = None):
        """
        Initialize parallel executor.

        Args:
            n_workers: Number of worker processes. If None, uses cpu_count - 1
                to leave one core for coordination. Minimum is 1.
        """
        if n_workers is None:
            n_workers = max(1, cpu_count() - 1)
        else:
            n_workers = max(1, int(n_workers))

        self.n_workers = n_workers
        self._pool = None
        self._pool_problem: Optional[RegistrationProblem] = None

        logger.info(
            f"Initialized ParticleParallelExecutor with {self.n_workers} workers "
            f"(total CPUs: {cpu_count()})"
        )

    def map_evaluations(
        self,
        problem: RegistrationProblem,
        positions: Sequence[np.ndarray],
    ) -> List[Tuple[np.ndarray, float, int]]:
        """
        Evaluate parameter vectors against a problem.

        Args:
            problem: Shared registration inputs
            positions: Parameter vectors to evaluate

        Returns:
            List of (params, cost, n_inner_iterations) in input order

        Raises:
            RuntimeError: If any evaluation fails
        """
        n_positions = len(positions)
        if n_positions == 0:
            return []

        start_time = time.time()

        # If only 1 worker or 1 particle, use sequential processing (no pool overhead)
        if self.n_workers == 1 or n_positions == 1:
            results = []
            for i, position in enumerate(positions):
                try:
                    results.append(evaluate_position(problem, position))
                except Exception as e:
                    logger.error(f"Error evaluating particle {i}: {e}", exc_info=True)
                    raise RuntimeError(f"Particle evaluation failed: {e}") from e
            logger.debug(
                f"Sequential evaluation complete: {n_positions} particles in {time.time() - start_time:.3f}s"
            )
            return results

        pool = self._get_pool(problem)
        results_dict = {}
        errors = []
        for idx, result, error in pool.imap_unordered(_worker_wrapper, list(enumerate(positions))):
            if error:
                errors.append((idx, error))
            else:
                results_dict[idx] = result

        if errors:
            error_msg = f"{len(errors)} particle evaluations failed out of {n_positions}"
            logger.error(error_msg)
            for idx, error in errors[:5]:  # Log first 5 errors
                logger.error(f"  Particle {idx}: {error}")
            if len(errors) > 5:
                logger.error(f"  ... and {len(errors) - 5} more errors")
            raise RuntimeError(f"{error_msg}: particles {sorted(idx for idx, _ in errors)}")

        logger.debug(
            f"Parallel evaluation complete: {n_positions} particles in {time.time() - start_time:.3f}s "
            f"({self.n_workers} workers)"
        )

        # Reorder results to match input order
        return [results_dict[i] for i in range(n_positions)]

    def _get_pool(self, problem: RegistrationProblem):
        if self._pool is not None and self._pool_problem is problem:
            return self._pool
        self.close()
        logger.info(f"Starting worker pool with {self.n_workers} processes")
        self._pool = Pool(processes=self.n_workers, initializer=_init_worker, initargs=(problem,))
        self._pool_problem = problem
        return self._pool

    def close(self) -> None:
        """Shut down the worker pool, if one is running."""
        if self._pool is not None:
            self._pool.close()
            self._pool.join()
            self._pool = None
            self._pool_problem = None

    def __enter__(self) -> "ParticleParallelExecutor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
