"""Data structures for problem description, configuration and results.

Architecture: Problem descriptor plus a 2x2 matrix of Params vs Metrics × Global vs Local

                 Params (input/config)         Metrics (output/results)
                 ─────────────────────         ────────────────────────
Global           GlobalParams                  GlobalMetrics
(same across     px, py, method, omega,        wall_time, converged,
ranks / agg)     halo_exchange...              iterations, residual...

Local            LocalParams                   LocalMetrics
(per-rank)       rank, hostname,               compute_times[],
                 neighbors, local_shape...     halo_times[]...
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError


# ============================================================================
# Problem descriptor
# ============================================================================


@dataclass(frozen=True)
class PointSource:
    """Fixed-value point source at a continuous position in [0, 1]²."""

    x: float
    y: float
    value: float

    def cell(self, nx: int, ny: int) -> Tuple[int, int]:
        """Global (1-based) grid cell this source is pinned to."""
        return int(math.floor(self.x * nx)) + 1, int(math.floor(self.y * ny)) + 1


@dataclass(frozen=True)
class Problem:
    """Global problem descriptor, replicated read-only on every worker."""

    nx: int
    ny: int
    precision_goal: float
    max_iter: int
    sources: Tuple[PointSource, ...] = ()

    def __post_init__(self):
        if self.nx < 1 or self.ny < 1:
            raise ConfigurationError(
                f"Grid dimensions must be positive, got {self.nx}x{self.ny}"
            )
        if self.max_iter < 1:
            raise ConfigurationError(
                f"max_iter must be a positive integer, got {self.max_iter}"
            )
        if not self.precision_goal >= 0.0:
            raise ConfigurationError(
                f"precision_goal must be non-negative, got {self.precision_goal}"
            )
        # Accept any iterable of sources but store an immutable tuple
        object.__setattr__(self, "sources", tuple(self.sources))

    @property
    def shape(self) -> Tuple[int, int]:
        return self.nx, self.ny


# ============================================================================
# Global (identical across ranks, or aggregated on rank 0)
# ============================================================================


@dataclass
class GlobalParams:
    """Run configuration - validated by Hydra, logged to MLflow as params.

    Immutable configuration set before the run. Identical across all ranks.
    """

    # Process grid
    px: int = 1
    py: int = 1

    # Solver
    method: str = "sor"  # "sor" | "cg"
    omega: float = 1.95

    # Communication
    halo_exchange: str = "numpy"  # "numpy" | "custom"

    # Numba
    use_numba: bool = False
    numba_threads: int = 1

    # I/O
    problem_file: Optional[str] = None
    output_dir: Optional[str] = None
    write_output: bool = True

    # Experiment tracking
    experiment_name: str = "default"

    # Derived
    n_ranks: int = field(init=False)

    def __post_init__(self):
        self.n_ranks = self.px * self.py

    @classmethod
    def from_config(cls, cfg) -> "GlobalParams":
        """Build from a Hydra/OmegaConf config, ignoring unrelated keys."""
        names = {name for name, f in cls.__dataclass_fields__.items() if f.init}
        return cls(**{k: cfg[k] for k in names if cfg.get(k) is not None})

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible params dict (bools as int, no None)."""
        return {
            k: (int(v) if isinstance(v, bool) else v)
            for k, v in self.__dict__.items()
            if v is not None
        }


@dataclass
class GlobalMetrics:
    """Aggregated results - logged to MLflow as metrics.

    Convergence values are the globally reduced ones, so they agree on
    every rank; timings are per rank.
    """

    converged: bool = False
    iterations: int = 0
    final_residual: Optional[float] = None
    wall_time: Optional[float] = None
    cpu_time: Optional[float] = None

    # Timing breakdown (sum across all iterations)
    total_compute_time: Optional[float] = None
    total_halo_time: Optional[float] = None

    # Performance
    mlups: Optional[float] = None  # Million Lattice Updates per Second

    # Numba runtime info (what was actually available)
    observed_numba_threads: Optional[int] = None

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible dict (no None, bools as int)."""
        return {
            k: (int(v) if isinstance(v, bool) else v)
            for k, v in self.__dict__.items()
            if v is not None
        }


# ============================================================================
# Local (per-rank)
# ============================================================================


@dataclass
class LocalParams:
    """Per-rank topology info - gathered to rank 0, logged as artifact."""

    rank: int
    hostname: str = ""
    cart_coords: Optional[Tuple[int, int]] = None
    neighbors: Dict[str, Optional[int]] = field(default_factory=dict)
    local_shape: Optional[Tuple[int, int]] = None
    offset: Optional[Tuple[int, int]] = None


@dataclass
class LocalMetrics:
    """Per-rank timeseries, accumulated during solve."""

    compute_times: List[float] = field(default_factory=list)
    halo_times: List[float] = field(default_factory=list)

    # Globally reduced convergence value per iteration (same on all ranks)
    residual_history: List[float] = field(default_factory=list)

    def clear(self):
        """Clear all timeseries data."""
        self.compute_times.clear()
        self.halo_times.clear()
        self.residual_history.clear()


# ============================================================================
# Grid geometry
# ============================================================================


@dataclass
class RankGeometry:
    """Per-rank tile geometry.

    Interior local index ``i`` (1-based, halo at 0 and ``dim - 1``) maps to
    global coordinate ``i + offset`` along each axis.
    """

    rank: int
    coords: Tuple[int, int]
    offset: Tuple[int, int]
    local_shape: Tuple[int, int]
    neighbors: Dict[str, Optional[int]]

    @property
    def halo_shape(self) -> Tuple[int, int]:
        return self.local_shape[0] + 2, self.local_shape[1] + 2

    @property
    def global_start(self) -> Tuple[int, int]:
        """First owned global cell (inclusive)."""
        return self.offset[0] + 1, self.offset[1] + 1

    @property
    def global_end(self) -> Tuple[int, int]:
        """Last owned global cell (inclusive)."""
        return self.offset[0] + self.local_shape[0], self.offset[1] + self.local_shape[1]

    def owns(self, gx: int, gy: int) -> bool:
        """True if global cell (gx, gy) lies in this tile's interior."""
        x0, y0 = self.global_start
        x1, y1 = self.global_end
        return x0 <= gx <= x1 and y0 <= gy <= y1
