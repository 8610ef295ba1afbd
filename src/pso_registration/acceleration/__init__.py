"""
Acceleration Module

Parallel evaluation of swarm particles across CPU cores.
"""

from .parallel_executor import ParticleParallelExecutor

__all__ = [
    "ParticleParallelExecutor",
]
