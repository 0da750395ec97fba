"""Distributed 2D Poisson solver package.

Solves a 2D Poisson/Laplace problem with fixed-value point sources on a
grid split over a Px x Py process grid. Workers exchange halo rows and
columns with their four neighbours and iterate one of two kernels:

- SORSolver: Red-black successive over-relaxation
- CGSolver: Conjugate Gradient

Workers run either as MPI processes (mpi4py, ``Poisson2D.mpi.comm``) or as
threads of one process (``LocalFabric``).
"""

from pathlib import Path

from .datastructures import (
    PointSource,
    Problem,
    GlobalParams,
    GlobalMetrics,
    LocalParams,
    LocalMetrics,
    RankGeometry,
)
from .errors import (
    Poisson2DError,
    ConfigurationError,
    TopologyError,
    ProblemFileError,
    FabricAbortedError,
)
from .kernels import NumPyKernel, NumbaKernel
from .mpi import (
    DistributedGrid,
    DomainDecomposition,
    LocalFabric,
    LocalWorld,
    create_topology,
    launch_local,
)
from .problem import broadcast_problem, parse_problem, read_problem_file, write_problem_file
from .solvers import BaseSolver, SORSolver, CGSolver, create_solver
from .runner import run_worker, run_local, spawn_mpi

__all__ = [
    # Data structures
    "PointSource",
    "Problem",
    "GlobalParams",
    "GlobalMetrics",
    "LocalParams",
    "LocalMetrics",
    "RankGeometry",
    # Errors
    "Poisson2DError",
    "ConfigurationError",
    "TopologyError",
    "ProblemFileError",
    "FabricAbortedError",
    # Kernels
    "NumPyKernel",
    "NumbaKernel",
    # Communication and grid
    "DistributedGrid",
    "DomainDecomposition",
    "LocalFabric",
    "LocalWorld",
    "create_topology",
    "launch_local",
    # Problem I/O
    "broadcast_problem",
    "parse_problem",
    "read_problem_file",
    "write_problem_file",
    # Solvers
    "BaseSolver",
    "SORSolver",
    "CGSolver",
    "create_solver",
    # Running
    "run_worker",
    "run_local",
    "spawn_mpi",
    # Utilities
    "get_project_root",
]


def get_project_root() -> Path:
    """Get project root directory (contains pyproject.toml)."""
    current = Path(__file__).resolve().parent
    while current != current.parent:
        if (current / "pyproject.toml").exists():
            return current
        current = current.parent

    # Fallback: assume standard src layout
    return Path(__file__).resolve().parent.parent.parent
