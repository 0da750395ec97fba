"""Utility modules for experiment tracking.

Submodules:
- mlflow: MLflow run orchestration and logging

Import examples:
    from utils import mlflow       # MLflow utilities
"""

import warnings

# Suppress MLflow FutureWarning about filesystem backend deprecation
warnings.filterwarnings("ignore", category=FutureWarning, module="mlflow")

from . import mlflow  # noqa: E402

__all__ = ["mlflow"]
