"""Distributed Conjugate Gradient solver."""

from dataclasses import dataclass

import numpy as np

from .base import BaseSolver


@dataclass
class CGState:
    """Search direction, residual and matrix-vector product, plus the
    global squared residual norm ``rho`` carried between iterations."""

    p: np.ndarray
    r: np.ndarray
    v: np.ndarray
    rho: float = 0.0


class CGSolver(BaseSolver):
    """Preconditioner-free Conjugate Gradient.

    The operator is ``A u = u - avg4(u)`` on free cells and the identity on
    source cells. Source cells start with zero residual, so ``p`` stays zero
    there and the pinned values never change.

    The convergence value is ``rho``, the global sum of squared residuals
    (not its square root), compared directly to the precision goal.
    """

    name = "cg"

    def __init__(self, grid, **kwargs):
        super().__init__(grid, **kwargs)
        self.state = None

    def initialize(self) -> float:
        grid = self.grid
        self.state = CGState(p=grid.allocate(), r=grid.allocate(), v=grid.allocate())

        # Residual of the starting field needs the neighbours' boundary values
        grid.sync_halos(self.phi)
        self.kernel.stencil_residual(self.phi, self.state.r, grid.source_mask)
        self.state.p[...] = self.state.r

        self.state.rho = self.fabric.allreduce_sum(
            self.kernel.dot(self.state.r, self.state.r)
        )
        return self.state.rho

    def advance(self) -> float:
        s = self.state
        kernel = self.kernel

        self._sync_halos(s.p)

        self._timed(kernel.matvec, s.p, s.v, self.grid.source_mask)
        pdotv = self.fabric.allreduce_sum(self._timed(kernel.dot, s.p, s.v))
        alpha = s.rho / pdotv

        t0 = self.fabric.wtime()
        self.grid.interior(self.phi)[...] += alpha * self.grid.interior(s.p)
        self.grid.interior(s.r)[...] -= alpha * self.grid.interior(s.v)
        self._time_compute += self.fabric.wtime() - t0

        rho_new = self.fabric.allreduce_sum(self._timed(kernel.dot, s.r, s.r))
        beta = rho_new / s.rho
        s.rho = rho_new

        t0 = self.fabric.wtime()
        self.grid.interior(s.p)[...] = self.grid.interior(s.r) + beta * self.grid.interior(s.p)
        self._time_compute += self.fabric.wtime() - t0

        return s.rho
