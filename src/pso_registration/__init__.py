"""
PSO Registration Package

A Python package for rigid registration of 3-D point clouds without known
correspondences. A particle swarm searches globally over rigid transforms;
every particle polishes its candidate with a Student's-t weighted ICP before
the swarm compares it, so the search combines population-level exploration
with point-level refinement.

The visualization subpackage (PyVista/Plotly) is imported on demand.
"""

__version__ = "0.1.0"

from .exceptions import *
from .alignment import *
from .acceleration import *
from .preprocessing import *
from .utils import *

__all__ = [
    "exceptions",
    "alignment",
    "acceleration",
    "preprocessing",
    "utils",
]
