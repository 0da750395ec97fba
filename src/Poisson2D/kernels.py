"""Stencil kernels for the SOR and CG solvers.

Simple kernel implementations - iteration control, communication and
reductions are handled by the solver. All functions operate on tile-shaped
arrays (interior plus halo ring) and only write interior cells.
"""

import numpy as np
import numba
from numba import njit, prange


# ============================================================================
# Numba implementations
# ============================================================================
# One prange source, compiled serially and in parallel. The parallel
# variants are used only when more than one Numba thread is requested.


def _sor_sweep_impl(phi, update, omega):
    nx = phi.shape[0] - 2
    ny = phi.shape[1] - 2
    row_err = np.zeros(nx)
    for i in prange(nx):
        x = i + 1
        err = 0.0
        for y in range(1, ny + 1):
            if update[x - 1, y - 1]:
                old = phi[x, y]
                c = (phi[x + 1, y] + phi[x - 1, y] + phi[x, y + 1] + phi[x, y - 1]) * 0.25 - old
                phi[x, y] = old + omega * c
                d = abs(old - phi[x, y])
                if d > err:
                    err = d
        row_err[i] = err
    if nx == 0:
        return 0.0
    return row_err.max()


def _matvec_impl(p, v, fixed):
    for x in prange(1, p.shape[0] - 1):
        for y in range(1, p.shape[1] - 1):
            v[x, y] = p[x, y]
            if not fixed[x, y]:
                v[x, y] -= (p[x + 1, y] + p[x - 1, y] + p[x, y + 1] + p[x, y - 1]) * 0.25


def _stencil_residual_impl(phi, r, fixed):
    for x in prange(1, phi.shape[0] - 1):
        for y in range(1, phi.shape[1] - 1):
            if fixed[x, y]:
                r[x, y] = 0.0
            else:
                r[x, y] = (
                    phi[x + 1, y] + phi[x - 1, y] + phi[x, y + 1] + phi[x, y - 1]
                ) * 0.25 - phi[x, y]


def _dot_impl(a, b):
    total = 0.0
    for x in range(1, a.shape[0] - 1):
        for y in range(1, a.shape[1] - 1):
            total += a[x, y] * b[x, y]
    return total


_sor_sweep_serial = njit(_sor_sweep_impl)
_sor_sweep_parallel = njit(parallel=True)(_sor_sweep_impl)
_matvec_serial = njit(_matvec_impl)
_matvec_parallel = njit(parallel=True)(_matvec_impl)
_stencil_residual_numba = njit(_stencil_residual_impl)
_dot_numba = njit(_dot_impl)


# ============================================================================
# Kernel classes
# ============================================================================


class NumPyKernel:
    """NumPy-based stencil kernel."""

    def __init__(self, numba_threads: int = 1):
        self.observed_numba_threads = None  # Not applicable for NumPy

    @staticmethod
    def _neighbor_sum(a: np.ndarray) -> np.ndarray:
        return a[2:, 1:-1] + a[:-2, 1:-1] + a[1:-1, 2:] + a[1:-1, :-2]

    def sor_sweep(self, phi: np.ndarray, update: np.ndarray, omega: float) -> float:
        """Over-relax the interior cells selected by ``update`` in place.

        ``update`` is interior-shaped. Selected cells must not neighbour each
        other (one checkerboard colour), so reading all neighbours before
        writing matches a sequential sweep. Returns the largest change.
        """
        interior = phi[1:-1, 1:-1]
        old = interior[update]
        if old.size == 0:
            return 0.0
        c = (self._neighbor_sum(phi)[update]) * 0.25 - old
        new = old + omega * c
        interior[update] = new
        return float(np.max(np.abs(old - new)))

    def matvec(self, p: np.ndarray, v: np.ndarray, fixed: np.ndarray):
        """v = A p; identity rows at fixed cells."""
        p_int = p[1:-1, 1:-1]
        v[1:-1, 1:-1] = np.where(
            fixed[1:-1, 1:-1], p_int, p_int - self._neighbor_sum(p) * 0.25
        )

    def stencil_residual(self, phi: np.ndarray, r: np.ndarray, fixed: np.ndarray):
        """r = b - A phi; zero at fixed cells."""
        phi_int = phi[1:-1, 1:-1]
        r[1:-1, 1:-1] = np.where(
            fixed[1:-1, 1:-1], 0.0, self._neighbor_sum(phi) * 0.25 - phi_int
        )

    def dot(self, a: np.ndarray, b: np.ndarray) -> float:
        """Local interior dot product."""
        return float(np.sum(a[1:-1, 1:-1] * b[1:-1, 1:-1]))

    def warmup(self, warmup_size: int = 10):
        """No-op for NumPy kernel."""
        pass


def init_numba_threads(numba_threads: int = 1) -> int:
    """Set the Numba thread count and start its threading layer.

    Call on the main thread before workers are spawned: a threading layer
    first started from a worker thread hangs interpreter shutdown.
    Returns the thread count Numba reports.
    """
    # Requested threads may be clamped by the NUMBA_NUM_THREADS env var
    if numba_threads is not None:
        numba.set_num_threads(min(numba_threads, numba.config.NUMBA_NUM_THREADS))
    return numba.get_num_threads()


class NumbaKernel:
    """Numba JIT-compiled stencil kernel."""

    def __init__(self, numba_threads: int = 1):
        # Record what Numba actually reports
        self.observed_numba_threads = init_numba_threads(numba_threads)

        parallel = self.observed_numba_threads > 1
        self._sor_sweep = _sor_sweep_parallel if parallel else _sor_sweep_serial
        self._matvec = _matvec_parallel if parallel else _matvec_serial

    def sor_sweep(self, phi, update, omega):
        return float(self._sor_sweep(phi, update, omega))

    def matvec(self, p, v, fixed):
        self._matvec(p, v, fixed)

    def stencil_residual(self, phi, r, fixed):
        _stencil_residual_numba(phi, r, fixed)

    def dot(self, a, b):
        return float(_dot_numba(a, b))

    def warmup(self, warmup_size: int = 10):
        """Trigger JIT compilation with a small problem."""
        phi = np.random.rand(warmup_size, warmup_size)
        fixed = np.zeros_like(phi, dtype=bool)
        update = np.ones((warmup_size - 2, warmup_size - 2), dtype=bool)
        work = np.zeros_like(phi)
        self.sor_sweep(phi, update, 1.0)
        self.matvec(phi, work, fixed)
        self.stencil_residual(phi, work, fixed)
        self.dot(phi, work)


def create_kernel(use_numba: bool = False, numba_threads: int = 1):
    """Select the NumPy or Numba kernel."""
    if use_numba:
        return NumbaKernel(numba_threads=numba_threads)
    return NumPyKernel(numba_threads=numba_threads)
