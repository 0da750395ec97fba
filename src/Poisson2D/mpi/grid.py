"""Distributed grid abstraction for parallel computation.

This module provides a DistributedGrid class that encapsulates:
- This worker's tile of the global field (interior plus one-cell halo ring)
- The source mask of cells pinned to a fixed value
- Halo exchange with the four neighbours (numpy buffers or MPI datatypes)

Solvers interact with this single interface rather than managing
communication details directly.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import List, Optional

import numpy as np

from ..datastructures import LocalParams, Problem, RankGeometry
from ..errors import ConfigurationError
from .decomposition import DomainDecomposition, ProcessTopology
from .fabric import Fabric
from .halo import create_halo_exchanger

log = logging.getLogger(__name__)


class DistributedGrid:
    """One worker's tile of the global 2D grid.

    Arrays are indexed ``[x, y]`` with shape ``halo_shape``; local index 0
    and ``dim - 1`` on each axis form the halo ring.

    Parameters
    ----------
    problem : Problem
        Global problem descriptor.
    fabric : Fabric
        Cartesian fabric returned by :func:`create_topology`.
    topology : ProcessTopology
        This worker's place in the process grid.
    halo_exchange : str
        'numpy' for buffer-based exchange (default)
        'custom' for MPI derived datatypes (zero-copy)

    Example
    -------
    >>> cart, topo = create_topology(fabric, 2, 2)
    >>> grid = DistributedGrid(problem, cart, topo)
    >>> grid.sync_halos(grid.phi)
    """

    def __init__(
        self,
        problem: Problem,
        fabric: Fabric,
        topology: ProcessTopology,
        halo_exchange: str = "numpy",
    ):
        px, py = topology.dims
        if problem.nx < px or problem.ny < py:
            raise ConfigurationError(
                f"Grid {problem.nx}x{problem.ny} too small for {px}x{py} process grid"
            )

        self.problem = problem
        self.fabric = fabric
        self.topology = topology
        self.rank = topology.rank
        self.size = topology.size
        self.halo_exchange_type = halo_exchange

        self._decomp = DomainDecomposition(problem.nx, problem.ny, topology.dims)
        self.geometry: RankGeometry = dataclasses.replace(
            self._decomp.geometry(topology.coords, rank=topology.rank),
            neighbors=dict(topology.neighbors),
        )

        # Copy geometry attributes for direct access
        self.neighbors = self.geometry.neighbors
        self.offset = self.geometry.offset
        self.local_shape = self.geometry.local_shape
        self.halo_shape = self.geometry.halo_shape

        self._halo_exchanger = create_halo_exchanger(halo_exchange)
        self._halo_exchanger.setup(self.local_shape, self.neighbors)

        # Field and source mask
        self.phi = self.allocate()
        self.source_mask = np.zeros(self.halo_shape, dtype=bool)
        self.n_sources = self._place_sources()

        # Global checkerboard colour of each interior cell
        gx, gy = self.global_coords()
        self.parity = (gx[:, None] + gy[None, :]) % 2

        log.debug(
            f"({self.rank}) tile {self.local_shape} at offset {self.offset}, "
            f"{self.n_sources} source(s), halo={halo_exchange}"
        )

    def allocate(self, dtype=np.float64) -> np.ndarray:
        """Allocate a zeroed local array with halo ring."""
        return np.zeros(self.halo_shape, dtype=dtype)

    @staticmethod
    def interior(arr: np.ndarray) -> np.ndarray:
        """View of the owned cells of a tile-shaped array."""
        return arr[1:-1, 1:-1]

    @property
    def interior_mask(self) -> np.ndarray:
        """Source mask restricted to the interior."""
        return self.source_mask[1:-1, 1:-1]

    def global_coords(self):
        """Global x and y coordinates of the interior cells (1-based)."""
        nx, ny = self.local_shape
        ox, oy = self.offset
        return np.arange(ox + 1, ox + nx + 1), np.arange(oy + 1, oy + ny + 1)

    def _place_sources(self) -> int:
        """Pin every source that falls inside this tile's interior."""
        ox, oy = self.offset
        count = 0
        for source in self.problem.sources:
            gx, gy = source.cell(self.problem.nx, self.problem.ny)
            if not self.geometry.owns(gx, gy):
                continue
            x, y = gx - ox, gy - oy
            self.phi[x, y] = source.value
            self.source_mask[x, y] = True
            count += 1
        return count

    def sync_halos(self, arr: np.ndarray):
        """Exchange halo data with all neighbours."""
        self._halo_exchanger.exchange(arr, self.fabric, self.neighbors)

    def gather(self, arr: Optional[np.ndarray] = None, root: int = 0) -> Optional[np.ndarray]:
        """Reassemble the global ``nx x ny`` interior on ``root``.

        Collective. Returns the global array on ``root`` and None elsewhere.
        """
        if arr is None:
            arr = self.phi
        pieces = self.fabric.gather((self.offset, self.interior(arr).copy()), root=root)
        if pieces is None:
            return None

        field = np.zeros(self.problem.shape, dtype=arr.dtype)
        for (ox, oy), block in pieces:
            nx, ny = block.shape
            field[ox:ox + nx, oy:oy + ny] = block
        return field

    def get_rank_info(self) -> LocalParams:
        """Get topology info for this rank (for MLflow artifact)."""
        return LocalParams(
            rank=self.rank,
            hostname=self.fabric.get_processor_name(),
            cart_coords=tuple(self.topology.coords),
            neighbors=dict(self.neighbors),
            local_shape=self.local_shape,
            offset=self.offset,
        )

    def gather_rank_info(self, root: int = 0) -> Optional[List[LocalParams]]:
        """Collect every rank's LocalParams on ``root``."""
        return self.fabric.gather(self.get_rank_info(), root=root)

    def get_halo_size_bytes(self) -> int:
        """Total bytes transferred per halo exchange (send + receive)."""
        nx, ny = self.local_shape
        sizes = {"top": nx, "bottom": nx, "left": ny, "right": ny}
        return sum(
            2 * 8 * n for name, n in sizes.items() if self.neighbors.get(name) is not None
        )
