"""
Unified Solver Runner - runs workers as local threads or as MPI processes.

Usage:
    uv run python run_solver.py problem_file=input.dat px=2 py=2 method=cg
    uv run python run_solver.py launcher=mpi px=2 py=2
    uv run python run_solver.py method=sor,cg --multirun
"""

import logging
import sys

import hydra
from omegaconf import DictConfig, OmegaConf

from Poisson2D import GlobalParams, Poisson2DError, run_local, spawn_mpi
from Poisson2D.postprocessing import assemble_directory, plot_field
from Poisson2D.runner import log_results

log = logging.getLogger(__name__)


def _run_local(cfg: DictConfig, params: GlobalParams):
    """Run all workers as threads of this process."""
    try:
        solvers = run_local(params)
    except Poisson2DError as exc:
        log.error(f"ERROR: {exc}")
        sys.exit(1)

    root = solvers[0]
    m = root.metrics
    log.info(
        f"Done: {m.iterations} iter, converged={m.converged}, "
        f"residual={m.final_residual if m.final_residual is not None else float('nan'):.3e}, "
        f"time={m.wall_time:.3f}s"
    )

    if cfg.mlflow.enabled:
        rank_info = [s.grid.get_rank_info() for s in solvers]
        log_results(params, root, rank_info, mode=cfg.mlflow.mode)


def _spawn_mpi(cfg: DictConfig, params: GlobalParams):
    """Spawn mpiexec with one process per worker."""
    extra = [
        f"mlflow.enabled={cfg.mlflow.enabled}",
        f"mlflow.mode={cfg.mlflow.mode}",
    ]
    try:
        spawn_mpi(params, extra_args=extra, timeout=cfg.mpi.get("timeout"))
    except RuntimeError as exc:
        log.error(str(exc))
        sys.exit(1)


@hydra.main(config_path="hydra-conf", config_name="config", version_base=None)
def main(cfg: DictConfig) -> None:
    """Entry point - runs local threads or spawns MPI based on launcher."""
    log.debug(OmegaConf.to_yaml(cfg))
    params = GlobalParams.from_config(cfg)
    log.info(f"{params.method}, {params.px}x{params.py} process grid, problem={params.problem_file}")

    if cfg.launcher == "local":
        _run_local(cfg, params)
    elif cfg.launcher == "mpi":
        _spawn_mpi(cfg, params)
    else:
        log.error(f"Unknown launcher: {cfg.launcher}")
        sys.exit(1)

    if cfg.plot and params.write_output and params.output_dir:
        field = assemble_directory(params.output_dir)
        path = plot_field(field, f"{params.output_dir}/solution.png",
                          title=f"{params.method.upper()} {params.px}x{params.py}")
        log.info(f"Saved plot to {path}")


if __name__ == "__main__":
    main()
