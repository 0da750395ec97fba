"""Poisson Solvers.

All solvers share the BaseSolver loop and differ only in their step:
- SORSolver: Red-black successive over-relaxation
- CGSolver: Conjugate Gradient
"""

from .base import BaseSolver
from .sor import SORSolver
from .cg import CGSolver, CGState
from ..errors import ConfigurationError

SOLVERS = {
    SORSolver.name: SORSolver,
    CGSolver.name: CGSolver,
}


def create_solver(method: str, grid, omega: float = 1.95, **kwargs) -> BaseSolver:
    """Create solver by name ('sor' or 'cg') for ``grid``."""
    try:
        cls = SOLVERS[method.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown solver method: {method}. Use one of {sorted(SOLVERS)}."
        ) from None
    if cls is SORSolver:
        kwargs["omega"] = omega
    return cls(grid, **kwargs)


__all__ = [
    "BaseSolver",
    "SORSolver",
    "CGSolver",
    "CGState",
    "SOLVERS",
    "create_solver",
]
