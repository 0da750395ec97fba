"""mpi4py-backed communication fabric."""

from __future__ import annotations

import numpy as np
from mpi4py import MPI

from .fabric import Fabric


def _peer(rank):
    """Map a missing neighbour to MPI.PROC_NULL."""
    return MPI.PROC_NULL if rank is None else rank


def _rank_or_none(rank: int):
    return rank if rank >= 0 else None


class MPIFabric(Fabric):
    """Fabric over an MPI communicator (one process per worker).

    Parameters
    ----------
    comm : MPI.Comm
        Communicator to wrap (default: MPI.COMM_WORLD).
    """

    def __init__(self, comm: MPI.Comm = None):
        self.comm = comm if comm is not None else MPI.COMM_WORLD
        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()

    def sendrecv(self, sendbuf, dest, recvbuf, source, tag=0):
        self.comm.Sendrecv(sendbuf, _peer(dest), tag, recvbuf, _peer(source), tag)

    def allreduce_sum(self, value):
        global_sum = np.zeros(1)
        self.comm.Allreduce(np.array([value], dtype=np.float64), global_sum, op=MPI.SUM)
        return float(global_sum[0])

    def allreduce_max(self, value):
        global_max = np.zeros(1)
        self.comm.Allreduce(np.array([value], dtype=np.float64), global_max, op=MPI.MAX)
        return float(global_max[0])

    def bcast(self, obj, root=0):
        return self.comm.bcast(obj, root=root)

    def gather(self, obj, root=0):
        return self.comm.gather(obj, root=root)

    def barrier(self):
        self.comm.Barrier()

    def abort(self, errorcode=1):
        self.comm.Abort(errorcode)

    def create_cart(self, dims):
        cart_comm = self.comm.Create_cart(
            dims=list(dims), periods=[False, False], reorder=False
        )
        return MPIFabric(cart_comm)

    def cart_coords(self):
        return tuple(self.comm.Get_coords(self.rank))

    def cart_shift(self, direction):
        src, dest = self.comm.Shift(direction, 1)
        return _rank_or_none(src), _rank_or_none(dest)

    def wtime(self):
        return MPI.Wtime()

    def get_processor_name(self):
        return MPI.Get_processor_name()
