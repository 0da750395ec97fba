"""Base class for solvers: the kernel-agnostic solve loop."""

import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Optional

from ..datastructures import GlobalMetrics, LocalMetrics
from ..kernels import create_kernel
from ..mpi.grid import DistributedGrid

log = logging.getLogger(__name__)


class BaseSolver(ABC):
    """Abstract base for the distributed Poisson solvers.

    Subclasses provide :meth:`initialize` and :meth:`advance`; both return
    the globally reduced convergence value, identical on every worker, so
    all workers leave the loop after the same iteration.

    Parameters
    ----------
    grid : DistributedGrid
        This worker's tile (owns field and source mask).
    max_iter : int, optional
        Iteration cap (default: the problem's).
    tolerance : float, optional
        Precision goal (default: the problem's).
    use_numba : bool
        Use Numba JIT kernel (default: False).
    numba_threads : int
        Number of Numba threads (default: 1).
    """

    name = "base"

    def __init__(
        self,
        grid: DistributedGrid,
        max_iter: Optional[int] = None,
        tolerance: Optional[float] = None,
        use_numba: bool = False,
        numba_threads: int = 1,
    ):
        self.grid = grid
        self.fabric = grid.fabric
        self.rank = grid.rank
        self.size = grid.size
        self.max_iter = grid.problem.max_iter if max_iter is None else max_iter
        self.tolerance = grid.problem.precision_goal if tolerance is None else tolerance

        self.kernel = create_kernel(use_numba=use_numba, numba_threads=numba_threads)

        # Metrics containers
        self.metrics = GlobalMetrics()
        self.timeseries = LocalMetrics()

        # Timing accumulators for the current iteration
        self._time_compute = 0.0
        self._time_halo = 0.0

    @property
    def phi(self):
        return self.grid.phi

    @abstractmethod
    def initialize(self) -> float:
        """Prepare solver state; return the initial convergence value."""
        pass

    @abstractmethod
    def advance(self) -> float:
        """Run one iteration; return the global convergence value."""
        pass

    def warmup(self, warmup_size: int = 10):
        """Warmup kernel (trigger Numba JIT if used)."""
        self.kernel.warmup(warmup_size=warmup_size)

    def solve(self) -> GlobalMetrics:
        """Iterate until the convergence value drops to the precision goal
        or the iteration cap is reached. Returns the metrics."""
        self._reset()

        self.fabric.barrier()
        t_start = self.fabric.wtime()
        cpu_start = time.process_time()

        value = self.initialize()
        count = 0
        while value > self.tolerance and count < self.max_iter:
            self._time_compute = 0.0
            self._time_halo = 0.0

            value = self.advance()
            count += 1

            self.timeseries.residual_history.append(value)
            self.timeseries.compute_times.append(self._time_compute)
            self.timeseries.halo_times.append(self._time_halo)

        self.metrics.iterations = count
        self.metrics.converged = bool(value <= self.tolerance)
        self.metrics.final_residual = float(value) if math.isfinite(value) else None

        wall_time = self.fabric.wtime() - t_start
        self._finalize(wall_time, time.process_time() - cpu_start)

        log.info(f"({self.rank} / {self.size}) Number of iterations: {count}")
        return self.metrics

    # ------------------------------------------------------------------
    # Timed building blocks for subclasses
    # ------------------------------------------------------------------

    def _sync_halos(self, arr):
        """Halo exchange, timed into the current iteration."""
        t0 = self.fabric.wtime()
        self.grid.sync_halos(arr)
        self._time_halo += self.fabric.wtime() - t0

    def _timed(self, fn, *args):
        """Call a kernel function, timed into the current iteration."""
        t0 = self.fabric.wtime()
        result = fn(*args)
        self._time_compute += self.fabric.wtime() - t0
        return result

    # ------------------------------------------------------------------

    def _reset(self):
        """Reset timers and timeseries."""
        self._time_compute = 0.0
        self._time_halo = 0.0
        self.timeseries.clear()
        self.metrics = GlobalMetrics()

    def _finalize(self, wall_time: float, cpu_time: float):
        """Finalize metrics after solve."""
        self.metrics.wall_time = wall_time
        self.metrics.cpu_time = cpu_time
        self.metrics.total_compute_time = sum(self.timeseries.compute_times)
        self.metrics.total_halo_time = sum(self.timeseries.halo_times)
        self.metrics.observed_numba_threads = self.kernel.observed_numba_threads

        n_cells = self.grid.problem.nx * self.grid.problem.ny
        if self.metrics.iterations > 0 and wall_time > 0:
            self.metrics.mlups = n_cells * self.metrics.iterations / (wall_time * 1e6)

    def report_timer(self):
        """Log elapsed wall time and CPU share for this worker."""
        wall = self.metrics.wall_time or 0.0
        cpu = self.metrics.cpu_time or 0.0
        share = 100.0 * cpu / wall if wall > 0 else 0.0
        log.info(
            f"({self.rank} / {self.size}) Elapsed processortime: "
            f"{wall:14.6f} s ({share:5.1f}% CPU)"
        )
