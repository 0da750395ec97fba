"""MLflow utilities for experiment tracking.

Provides:
- Context manager for MLflow run orchestration
- Logging functions for parameters, metrics, time-series and per-rank tables
"""

from .io import (
    setup_mlflow_tracking,
    start_mlflow_run_context,
    log_parameters,
    log_metrics_dict,
    log_timeseries_metrics,
    log_rank_table,
    rank_table,
    run_environment,
)

__all__ = [
    "setup_mlflow_tracking",
    "start_mlflow_run_context",
    "log_parameters",
    "log_metrics_dict",
    "log_timeseries_metrics",
    "log_rank_table",
    "rank_table",
    "run_environment",
]
