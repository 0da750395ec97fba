"""MLflow I/O utilities for experiment tracking.

This module provides helpers for:
- Setting up MLflow tracking (local or Databricks).
- Orchestrating MLflow runs (context manager for parent/nested runs).
- Logging parameters, metrics, timeseries and per-rank tables.
"""

import logging
import os
import time
from contextlib import contextmanager
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Iterable, Optional

import mlflow
import pandas as pd

log = logging.getLogger(__name__)


def setup_mlflow_tracking(mode: str = "local", tracking_dir: Optional[Path] = None):
    """
    Configures MLflow tracking.

    Parameters
    ----------
    mode : str
        "databricks" or "local".
    tracking_dir : Path, optional
        Directory for the local file store (default: ./mlruns).
    """
    if mode == "databricks":
        try:
            mlflow.login(backend="databricks", interactive=False)
            mlflow.set_tracking_uri("databricks")
            log.info("Connected to Databricks MLflow tracking.")
        except Exception as e:
            raise RuntimeError(
                "MLflow Databricks setup failed. Ensure credentials are configured."
            ) from e
    elif mode == "local":
        mlruns_path = Path(tracking_dir) if tracking_dir else Path.cwd() / "mlruns"
        mlflow.set_tracking_uri(mlruns_path.resolve().as_uri())
        log.info(f"Using local file-based MLflow tracking backend: {mlruns_path}")
    else:
        log.warning(
            f"Unknown MLflow mode '{mode}'. Using existing URI: {mlflow.get_tracking_uri()}"
        )


def get_mlflow_client() -> mlflow.tracking.MlflowClient:
    """Get an MLflow tracking client."""
    return mlflow.tracking.MlflowClient()


def run_environment() -> str:
    """'hpc' inside a batch job, 'mpi' under mpiexec, else 'local'."""
    if os.environ.get("LSB_JOBID") or os.environ.get("SLURM_JOB_ID"):
        return "hpc"
    if os.environ.get("OMPI_COMM_WORLD_SIZE") or os.environ.get("PMI_SIZE"):
        return "mpi"
    return "local"


@contextmanager
def start_mlflow_run_context(
    experiment_name: str,
    parent_run_name: str,
    child_run_name: str,
    tags: Optional[dict] = None,
    project_prefix: str = "/Shared/Poisson2D",
):
    """
    Start a child run nested under a parent run of the same name.

    Runs of one problem size share a parent; re-running reuses the existing
    parent instead of creating a duplicate.

    Parameters
    ----------
    experiment_name : str
        MLflow experiment (prefixed with ``project_prefix`` on Databricks).
    parent_run_name, child_run_name : str
        Names of the grouping run and of this run.
    tags : dict, optional
        Extra tags for the child run.
    """
    if mlflow.get_tracking_uri() == "databricks" and not experiment_name.startswith("/"):
        experiment_name = f"{project_prefix}/{experiment_name}"

    exp = mlflow.set_experiment(experiment_name)
    log.info(f"Using MLflow experiment: {experiment_name}")

    existing = get_mlflow_client().search_runs(
        experiment_ids=[exp.experiment_id],
        filter_string=f"tags.mlflow.runName = '{parent_run_name}' AND tags.is_parent = 'true'",
        max_results=1,
    )
    parent_id = existing[0].info.run_id if existing else None

    child_tags = {"environment": run_environment(), **(tags or {})}
    with mlflow.start_run(run_id=parent_id, run_name=parent_run_name, tags={"is_parent": "true"}):
        with mlflow.start_run(run_name=child_run_name, nested=True, tags=child_tags) as run:
            log.info(
                f"Started MLflow run '{run.info.run_name}' ({run.info.run_id}) "
                f"[{child_tags['environment']}]"
            )
            yield run


def log_parameters(params: dict):
    """Log a dictionary of parameters to the active MLflow run."""
    mlflow.log_params(params)


def log_metrics_dict(metrics: dict):
    """Log a dictionary of metrics to the active MLflow run, filtering out None values."""
    filtered_metrics = {k: v for k, v in metrics.items() if v is not None}
    mlflow.log_metrics(filtered_metrics)


def log_timeseries_metrics(timeseries_data: object, chunk_size: int = 1000) -> int:
    """Log time series data as step-based metrics to the active MLflow run.

    Returns the number of metric points logged.
    """
    if not mlflow.active_run():
        return 0
    client = get_mlflow_client()
    run_id = mlflow.active_run().info.run_id
    timestamp = int(time.time() * 1000)

    metrics_to_log = []
    for name, values in asdict(timeseries_data).items():
        for step, value in enumerate(values):
            metrics_to_log.append(mlflow.entities.Metric(name, float(value), timestamp, step))

    for i in range(0, len(metrics_to_log), chunk_size):
        client.log_batch(run_id=run_id, metrics=metrics_to_log[i : i + chunk_size])
    if metrics_to_log:
        log.info(f"Logged {len(metrics_to_log)} time-series metrics.")
    return len(metrics_to_log)


def rank_table(rank_info: Iterable) -> pd.DataFrame:
    """One row per rank from LocalParams dataclasses (or plain dicts)."""
    rows = [asdict(r) if is_dataclass(r) else dict(r) for r in rank_info]
    df = pd.DataFrame(rows)
    # Tuples/dicts are not JSON-table friendly; store them as strings
    for col in ("cart_coords", "neighbors", "local_shape", "offset"):
        if col in df.columns:
            df[col] = df[col].astype(str)
    return df.sort_values("rank").reset_index(drop=True) if "rank" in df.columns else df


def log_rank_table(rank_info: Iterable, artifact_file: str = "ranks.json"):
    """Log per-rank topology as an MLflow table artifact."""
    df = rank_table(rank_info)
    mlflow.log_table(df, artifact_file=artifact_file)
    if "hostname" in df.columns:
        log_parameters({"nodes": int(df["hostname"].nunique())})
