"""Shared fixtures: small problems and an in-process multi-worker runner."""

import numpy as np
import pytest

from Poisson2D import GlobalParams, PointSource, Problem, launch_local, run_worker
from Poisson2D.kernels import init_numba_threads


@pytest.fixture
def center_problem():
    """11x11 grid with a single unit source in the centre cell (6, 6)."""
    return Problem(nx=11, ny=11, precision_goal=1e-8, max_iter=5000,
                   sources=(PointSource(0.5, 0.5, 1.0),))


@pytest.fixture
def mixed_problem():
    """Non-square grid, three sources of both signs."""
    return Problem(
        nx=14,
        ny=9,
        precision_goal=1e-10,
        max_iter=5000,
        sources=(
            PointSource(0.25, 0.25, 1.0),
            PointSource(0.75, 0.75, -1.0),
            PointSource(0.5, 0.5, 0.5),
        ),
    )


@pytest.fixture
def solve():
    """Run the full worker pipeline on ``px * py`` threads.

    Returns ``(solvers, field)``: the per-rank solvers and the global
    field gathered on rank 0.
    """

    def _solve(problem, px=1, py=1, method="sor", **kwargs):
        kwargs.setdefault("write_output", False)
        params = GlobalParams(px=px, py=py, method=method, **kwargs)
        if params.use_numba:
            init_numba_threads(params.numba_threads)

        def target(fabric):
            solver = run_worker(fabric, params, problem)
            return solver, solver.grid.gather()

        results = launch_local(params.n_ranks, target)
        solvers = [s for s, _ in results]
        return solvers, results[0][1]

    return _solve


@pytest.fixture
def rng():
    return np.random.default_rng(42)
