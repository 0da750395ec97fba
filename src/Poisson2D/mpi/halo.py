"""Halo exchange implementations for distributed grids.

Every exchange is the same four paired messages, one per direction:

====  ======================  =====================  ==========
tag   send                    receive into           peers
====  ======================  =====================  ==========
0     column ``y = 1``        column ``y = -1``      top / bottom
1     column ``y = -2``       column ``y = 0``       bottom / top
2     row ``x = 1``           row ``x = -1``         left / right
3     row ``x = -2``          row ``x = 0``          right / left
====  ======================  =====================  ==========

Only interior-length rows/columns travel; halo corners are never touched.
A missing neighbour leaves that side of the halo as it was.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Optional, Tuple

import numpy as np

if TYPE_CHECKING:
    from .fabric import Fabric

log = logging.getLogger(__name__)

# (tag, send slice, receive slice, send-to neighbour, receive-from neighbour)
_PROTOCOL = (
    (0, (slice(1, -1), 1), (slice(1, -1), -1), "top", "bottom"),
    (1, (slice(1, -1), -2), (slice(1, -1), 0), "bottom", "top"),
    (2, (1, slice(1, -1)), (-1, slice(1, -1)), "left", "right"),
    (3, (-2, slice(1, -1)), (0, slice(1, -1)), "right", "left"),
)


class HaloExchanger(ABC):
    """Abstract base for halo exchange strategies."""

    @abstractmethod
    def setup(self, local_shape: Tuple[int, int], neighbors: Dict[str, Optional[int]]):
        """Initialize exchange buffers or datatypes."""
        pass

    @abstractmethod
    def exchange(self, arr: np.ndarray, fabric: "Fabric", neighbors: Dict[str, Optional[int]]):
        """Refresh the halo ring of ``arr`` from the neighbours."""
        pass


class NumpyHaloExchanger(HaloExchanger):
    """Halo exchange using contiguous buffer copies. Works on any fabric."""

    def setup(self, local_shape, neighbors):
        """Pre-allocate one send and one receive buffer per message."""
        nx, ny = local_shape
        self._buffers = []
        for tag, send, recv, _, _ in _PROTOCOL:
            length = nx if tag < 2 else ny
            self._buffers.append((np.empty(length), np.empty(length)))

    def exchange(self, arr, fabric, neighbors):
        for (tag, send, recv, dest_name, source_name), (sendbuf, recvbuf) in zip(
            _PROTOCOL, self._buffers
        ):
            dest = neighbors.get(dest_name)
            source = neighbors.get(source_name)
            if dest is None and source is None:
                continue

            if dest is not None:
                sendbuf[:] = arr[send]
            fabric.sendrecv(sendbuf, dest, recvbuf, source, tag)
            if source is not None:
                arr[recv] = recvbuf


class DatatypeHaloExchanger(HaloExchanger):
    """Halo exchange using MPI derived datatypes (zero-copy, MPIFabric only).

    Rows along x (fixed y) are strided by the padded row length; columns
    along y (fixed x) are contiguous.
    """

    def setup(self, local_shape, neighbors):
        """Create MPI vector datatypes and pre-compute flat offsets."""
        from mpi4py import MPI

        self._MPI = MPI
        nx, ny = local_shape
        hx, hy = nx + 2, ny + 2

        def flat_idx(x, y):
            return x * hy + y

        # Fixed y, all interior x: nx blocks of 1, stride hy
        dt_y = MPI.DOUBLE.Create_vector(nx, 1, hy)
        dt_y.Commit()
        # Fixed x, all interior y: contiguous
        dt_x = MPI.DOUBLE.Create_vector(ny, 1, 1)
        dt_x.Commit()
        self._datatypes = (dt_y, dt_x)

        self._messages = [
            (0, dt_y, flat_idx(1, 1), flat_idx(1, hy - 1), "top", "bottom"),
            (1, dt_y, flat_idx(1, hy - 2), flat_idx(1, 0), "bottom", "top"),
            (2, dt_x, flat_idx(1, 1), flat_idx(hx - 1, 1), "left", "right"),
            (3, dt_x, flat_idx(hx - 2, 1), flat_idx(0, 1), "right", "left"),
        ]

    def exchange(self, arr, fabric, neighbors):
        comm = getattr(fabric, "comm", None)
        if comm is None:
            raise TypeError("DatatypeHaloExchanger requires an MPIFabric")
        if not arr.flags.c_contiguous:
            raise ValueError("Halo exchange with MPI datatypes needs a C-contiguous array")

        MPI = self._MPI
        flat = arr.reshape(-1)

        for tag, dt, send_off, recv_off, dest_name, source_name in self._messages:
            dest = neighbors.get(dest_name)
            source = neighbors.get(source_name)
            if dest is None and source is None:
                continue
            comm.Sendrecv(
                [flat[send_off:], 1, dt], MPI.PROC_NULL if dest is None else dest, tag,
                [flat[recv_off:], 1, dt], MPI.PROC_NULL if source is None else source, tag,
            )

    def __del__(self):
        """Free MPI datatypes (nothing to free once MPI is finalized)."""
        MPI = getattr(self, "_MPI", None)
        if MPI is None or MPI.Is_finalized():
            return
        for dt in getattr(self, "_datatypes", ()):
            if dt != MPI.DATATYPE_NULL:
                dt.Free()


def create_halo_exchanger(exchange_type: str) -> HaloExchanger:
    """Factory: 'numpy' for buffer-based, 'custom' for MPI datatypes."""
    if exchange_type == "numpy":
        return NumpyHaloExchanger()
    elif exchange_type == "custom":
        return DatatypeHaloExchanger()
    else:
        raise ValueError(f"Unknown halo_exchange type: {exchange_type}")
