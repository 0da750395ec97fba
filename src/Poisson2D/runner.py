"""Run the solver on one worker, on threads in-process, or via mpiexec.

MPI worker entry point::

    mpiexec -n 4 python -m Poisson2D.runner px=2 py=2 method=cg problem_file=input.dat
"""

from __future__ import annotations

import logging
import subprocess
import sys
from dataclasses import asdict
from typing import List, Optional

from .datastructures import GlobalParams, Problem
from .errors import ConfigurationError, Poisson2DError
from .kernels import init_numba_threads
from .mpi.decomposition import create_topology
from .mpi.fabric import Fabric, launch_local
from .mpi.grid import DistributedGrid
from .problem import broadcast_problem
from .solvers import SOLVERS, BaseSolver, create_solver

log = logging.getLogger(__name__)


def run_worker(fabric: Fabric, params: GlobalParams, problem: Optional[Problem] = None) -> BaseSolver:
    """Full pipeline for one worker: topology, problem, grid, solve, output.

    Parameters
    ----------
    fabric : Fabric
        World fabric of this worker.
    params : GlobalParams
        Run configuration (identical on all workers).
    problem : Problem, optional
        Problem descriptor; read from ``params.problem_file`` on rank 0 and
        broadcast when omitted.

    Returns
    -------
    BaseSolver
        The finished solver (grid, field and metrics attached).
    """
    if params.method.lower() not in SOLVERS:
        raise ConfigurationError(f"Unknown solver method: {params.method}")

    # Fails identically everywhere before anything is allocated
    cart, topology = create_topology(fabric, params.px, params.py)

    if problem is None:
        problem = broadcast_problem(cart, params.problem_file)

    grid = DistributedGrid(problem, cart, topology, halo_exchange=params.halo_exchange)
    solver = create_solver(
        params.method,
        grid,
        omega=params.omega,
        use_numba=params.use_numba,
        numba_threads=params.numba_threads,
    )
    solver.warmup()
    solver.solve()

    if params.write_output and params.output_dir is not None:
        from .postprocessing import write_output

        write_output(grid, params.output_dir)

    solver.report_timer()
    return solver


def run_local(
    params: GlobalParams, problem: Optional[Problem] = None, n_workers: Optional[int] = None
) -> List[BaseSolver]:
    """Run all workers as threads of this process.

    ``n_workers`` defaults to ``px * py``; a different value is rejected by
    the topology check on every worker.
    """
    size = params.n_ranks if n_workers is None else n_workers
    log.info(f"{params.method}, {params.px}x{params.py} process grid, {size} local worker(s)")
    if params.use_numba:
        # Numba's threading layer must be started on the main thread
        init_numba_threads(params.numba_threads)
    return launch_local(size, lambda fabric: run_worker(fabric, params, problem))


def run_mpi_worker(params: GlobalParams, track: bool = False, mlflow_mode: str = "local") -> Optional[BaseSolver]:
    """Run this MPI process as one worker; abort every rank on failure."""
    from .mpi.comm import MPIFabric

    fabric = MPIFabric()
    try:
        solver = run_worker(fabric, params)
    except Exception as exc:
        # Other ranks may be blocked in a collective: take the whole run down
        log.error(
            f"({fabric.rank} / {fabric.size}) ERROR: {exc}",
            exc_info=not isinstance(exc, Poisson2DError),
        )
        fabric.abort(1)
        return None

    if track:
        rank_info = solver.grid.gather_rank_info()
        if fabric.rank == 0:
            log_results(params, solver, rank_info, mode=mlflow_mode)
    return solver


def log_results(params: GlobalParams, solver: BaseSolver, rank_info=None, mode: str = "local"):
    """Log a finished run to MLflow (call on rank 0 only)."""
    from utils.mlflow import (
        setup_mlflow_tracking,
        start_mlflow_run_context,
        log_parameters,
        log_metrics_dict,
        log_rank_table,
        log_timeseries_metrics,
    )

    setup_mlflow_tracking(mode=mode)
    problem = solver.grid.problem
    run_name = f"{params.method}_{problem.nx}x{problem.ny}_p{params.px}x{params.py}"

    with start_mlflow_run_context(
        experiment_name=params.experiment_name,
        parent_run_name=f"{problem.nx}x{problem.ny}",
        child_run_name=run_name,
        tags={"method": params.method, "process_grid": f"{params.px}x{params.py}"},
    ):
        log_parameters({
            **params.to_mlflow(),
            "nx": problem.nx,
            "ny": problem.ny,
            "precision_goal": problem.precision_goal,
            "max_iter": problem.max_iter,
            "n_sources": len(problem.sources),
        })
        log_metrics_dict(solver.metrics.to_mlflow())
        log_timeseries_metrics(solver.timeseries)
        if rank_info:
            log_rank_table(rank_info)


def spawn_mpi(params: GlobalParams, extra_args: Optional[List[str]] = None, timeout: Optional[float] = 600):
    """Launch ``mpiexec -n P python -m Poisson2D.runner`` with ``params``.

    Returns the CompletedProcess; raises RuntimeError when mpiexec fails.
    """
    cmd = ["mpiexec", "-n", str(params.n_ranks), sys.executable, "-m", "Poisson2D.runner"]
    for key, val in asdict(params).items():
        if key == "n_ranks" or val is None:
            continue
        cmd.append(f"{key}={val}")
    cmd.extend(extra_args or [])

    log.info(" ".join(cmd))
    result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)

    for line in (result.stdout or "").strip().split("\n"):
        if line:
            log.info(line)
    for line in (result.stderr or "").strip().split("\n"):
        if line:
            log.warning(line) if "error" in line.lower() else log.info(line)

    if result.returncode != 0:
        raise RuntimeError(f"mpiexec exited with code {result.returncode}")
    return result


def main(argv: Optional[List[str]] = None):
    """MPI worker entry: ``key=value`` overrides, e.g. ``px=2 py=2 method=cg``."""
    from omegaconf import OmegaConf

    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

    cfg = OmegaConf.from_dotlist(sys.argv[1:] if argv is None else argv)
    params = GlobalParams.from_config(cfg)
    track = bool(OmegaConf.select(cfg, "mlflow.enabled", default=False))
    mode = OmegaConf.select(cfg, "mlflow.mode", default="local")
    run_mpi_worker(params, track=track, mlflow_mode=mode)


if __name__ == "__main__":
    main()
