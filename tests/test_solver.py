"""Tests for the SOR and CG solvers, single- and multi-worker."""

import dataclasses

import numpy as np
import pytest

from Poisson2D import (
    CGSolver,
    ConfigurationError,
    LocalWorld,
    PointSource,
    Problem,
    SORSolver,
    create_solver,
    create_topology,
)
from Poisson2D.mpi import DistributedGrid


def _tight(problem):
    """CG compares the squared residual norm, so ask for a much smaller goal."""
    return dataclasses.replace(problem, precision_goal=1e-20)


def _single_grid(problem):
    cart, topo = create_topology(LocalWorld(1).fabric(0), 1, 1)
    return DistributedGrid(problem, cart, topo)


class TestSequentialSolver:
    """Tests for single-worker execution."""

    @pytest.mark.parametrize("method", ["sor", "cg"])
    def test_solver_converges(self, solve, center_problem, method):
        solvers, _ = solve(center_problem, method=method, omega=1.5)
        m = solvers[0].metrics

        assert m.converged
        assert 0 < m.iterations < center_problem.max_iter
        assert m.final_residual <= center_problem.precision_goal

    @pytest.mark.parametrize("px,py", [(1, 1), (2, 2)])
    @pytest.mark.parametrize("method", ["sor", "cg"])
    def test_sources_keep_their_value(self, solve, mixed_problem, method, px, py):
        _, field = solve(mixed_problem, px=px, py=py, method=method)

        for source in mixed_problem.sources:
            gx, gy = source.cell(mixed_problem.nx, mixed_problem.ny)
            assert field[gx - 1, gy - 1] == source.value

    @pytest.mark.parametrize("kwargs", [{}, {"omega": 1.5}], ids=["default-omega", "omega-1.5"])
    def test_sor_solution_is_symmetric(self, solve, center_problem, kwargs):
        """A centred source on a square grid gives a field symmetric under
        reflection and transposition."""
        solvers, field = solve(center_problem, method="sor", **kwargs)

        assert solvers[0].metrics.converged
        assert np.allclose(field, field[::-1, :], atol=1e-9)
        assert np.allclose(field, field[:, ::-1], atol=1e-9)
        assert np.allclose(field, field.T, atol=1e-9)

    def test_solution_is_discrete_harmonic(self, solve, center_problem):
        """Away from sources each cell is the average of its neighbours."""
        _, field = solve(center_problem, method="sor", omega=1.5)

        padded = np.pad(field, 1)
        avg = 0.25 * (padded[2:, 1:-1] + padded[:-2, 1:-1] + padded[1:-1, 2:] + padded[1:-1, :-2])
        free = np.ones_like(field, dtype=bool)
        free[5, 5] = False
        assert np.max(np.abs(field - avg)[free]) < 1e-6

    @pytest.mark.parametrize("method", ["sor", "cg"])
    def test_sor_and_cg_agree(self, solve, mixed_problem, method):
        _, reference = solve(mixed_problem, method="sor", omega=1.5)
        problem = _tight(mixed_problem) if method == "cg" else mixed_problem
        _, field = solve(problem, method=method, omega=1.5)
        assert np.allclose(field, reference, atol=1e-6)

    def test_no_sources_is_zero(self, solve):
        problem = Problem(nx=5, ny=5, precision_goal=1e-6, max_iter=100)
        solvers, field = solve(problem, method="cg")

        assert np.all(field == 0.0)
        assert solvers[0].metrics.iterations == 0
        assert solvers[0].metrics.converged

    def test_with_numba(self, solve, center_problem):
        solvers, field = solve(center_problem, method="sor", omega=1.5, use_numba=True)
        _, reference = solve(center_problem, method="sor", omega=1.5)

        assert solvers[0].metrics.converged
        assert np.allclose(field, reference, atol=1e-7)


class TestIterationCap:
    """The iteration cap ends the loop without reporting convergence."""

    @pytest.mark.parametrize("method", ["sor", "cg"])
    def test_capped_run_not_converged(self, solve, method):
        problem = Problem(nx=30, ny=30, precision_goal=0.0, max_iter=7,
                          sources=(PointSource(0.3, 0.6, 1.0),))
        solvers, _ = solve(problem, method=method)
        m = solvers[0].metrics

        assert m.iterations == 7
        assert not m.converged
        assert len(solvers[0].timeseries.residual_history) == 7
        assert len(solvers[0].timeseries.compute_times) == 7
        assert len(solvers[0].timeseries.halo_times) == 7

    def test_cg_residual_decreases(self, solve, mixed_problem):
        """The CG residual is not monotone (only the A-norm of the error is),
        but the loop stops at the first value within the goal, so the last
        entry is below every earlier one."""
        solvers, _ = solve(mixed_problem, method="cg")
        history = solvers[0].timeseries.residual_history

        assert len(history) > 1
        assert history[-1] < history[0]
        assert history[-1] < min(history[:-1])
        assert all(value > mixed_problem.precision_goal for value in history[:-1])
        assert history[-1] <= mixed_problem.precision_goal


class TestDistributedSolver:
    """Multi-worker runs must reproduce the single-worker answer."""

    @pytest.mark.parametrize("px,py", [(2, 2), (3, 1), (1, 2), (3, 2)])
    def test_sor_matches_single_worker(self, solve, mixed_problem, px, py):
        """Red-black SOR is order-independent within a colour, so the
        decomposition does not change the iterates."""
        ref_solvers, reference = solve(mixed_problem, method="sor", omega=1.5)
        solvers, field = solve(mixed_problem, px=px, py=py, method="sor", omega=1.5)

        assert all(s.metrics.iterations == ref_solvers[0].metrics.iterations for s in solvers)
        assert np.allclose(field, reference, rtol=0, atol=1e-12)

    @pytest.mark.parametrize("px,py", [(2, 2), (1, 3)])
    def test_cg_matches_single_worker(self, solve, mixed_problem, px, py):
        problem = _tight(mixed_problem)
        _, reference = solve(problem, method="cg")
        solvers, field = solve(problem, px=px, py=py, method="cg")

        assert all(s.metrics.converged for s in solvers)
        assert np.allclose(field, reference, atol=1e-6)

    @pytest.mark.parametrize("method", ["sor", "cg"])
    def test_all_workers_agree_on_iterations(self, solve, mixed_problem, method):
        solvers, _ = solve(mixed_problem, px=2, py=2, method=method)

        iterations = {s.metrics.iterations for s in solvers}
        residuals = {s.metrics.final_residual for s in solvers}
        assert len(iterations) == 1
        assert len(residuals) == 1

    def test_source_near_tile_boundary(self, solve):
        """A source next to a tile edge influences the neighbouring tile
        from the first iteration on."""
        problem = Problem(nx=8, ny=8, precision_goal=0.0, max_iter=1,
                          sources=(PointSource(0.49, 0.3, 1.0),))  # cell (4, 3)
        _, field = solve(problem, px=2, py=1, method="sor", omega=1.0)

        # Cell (5, 3) sits on the right tile and sees the source via the halo
        assert field[4, 2] > 0.0


class TestSolverConfiguration:

    def test_create_solver_by_name(self, center_problem):
        grid = _single_grid(center_problem)
        assert isinstance(create_solver("SOR", grid, omega=1.2), SORSolver)
        assert create_solver("sor", grid, omega=1.2).omega == 1.2
        assert isinstance(create_solver("cg", grid), CGSolver)

    def test_unknown_method(self, center_problem):
        with pytest.raises(ConfigurationError, match="Unknown solver method"):
            create_solver("jacobi", _single_grid(center_problem))

    def test_overrides(self, center_problem):
        solver = SORSolver(_single_grid(center_problem), max_iter=3, tolerance=0.0)
        metrics = solver.solve()
        assert metrics.iterations == 3

    def test_metrics_populated(self, solve, center_problem):
        solvers, _ = solve(center_problem, method="cg")
        m = solvers[0].metrics

        assert m.wall_time > 0
        assert m.cpu_time is not None
        assert m.total_compute_time >= 0
        assert m.total_halo_time >= 0
        assert m.mlups > 0
        assert m.observed_numba_threads is None
