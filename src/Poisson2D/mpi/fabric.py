"""Communication fabric: point-to-point and collective operations.

Solvers and grids talk to their peers only through a :class:`Fabric`.
Two implementations exist:

- :class:`~Poisson2D.mpi.comm.MPIFabric`: mpi4py communicator, one process
  per worker (launched with ``mpiexec``).
- :class:`LocalFabric`: workers are threads of one process, connected by
  queues and a shared barrier. Used for in-process runs and tests.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Any, Callable, List, Optional, Tuple

import numpy as np

from ..errors import FabricAbortedError
from .decomposition import cart_coords, cart_shift

log = logging.getLogger(__name__)


class Fabric(ABC):
    """Abstract communicator over a fixed set of workers."""

    rank: int
    size: int

    @abstractmethod
    def sendrecv(
        self,
        sendbuf: np.ndarray,
        dest: Optional[int],
        recvbuf: np.ndarray,
        source: Optional[int],
        tag: int = 0,
    ):
        """Send ``sendbuf`` to ``dest`` and receive into ``recvbuf`` from ``source``.

        A ``None`` peer turns that half into a no-op.
        """

    @abstractmethod
    def allreduce_sum(self, value: float) -> float:
        """Global sum of one float per worker."""

    @abstractmethod
    def allreduce_max(self, value: float) -> float:
        """Global maximum of one float per worker."""

    @abstractmethod
    def bcast(self, obj: Any, root: int = 0) -> Any:
        """Broadcast a picklable object from ``root``."""

    @abstractmethod
    def gather(self, obj: Any, root: int = 0) -> Optional[List[Any]]:
        """Gather one object per worker on ``root`` (``None`` elsewhere)."""

    @abstractmethod
    def barrier(self):
        """Block until every worker has entered the barrier."""

    @abstractmethod
    def abort(self, errorcode: int = 1):
        """Tear down every worker of the run."""

    @abstractmethod
    def create_cart(self, dims: Tuple[int, int]) -> "Fabric":
        """Return a fabric with a non-periodic 2D Cartesian topology attached."""

    @abstractmethod
    def cart_coords(self) -> Tuple[int, int]:
        """Cartesian coordinates of this worker."""

    @abstractmethod
    def cart_shift(self, direction: int) -> Tuple[Optional[int], Optional[int]]:
        """(lower, upper) neighbour ranks along ``direction``; ``None`` at edges."""

    def wtime(self) -> float:
        """Wall-clock time in seconds."""
        return time.perf_counter()

    def get_processor_name(self) -> str:
        import socket

        return socket.gethostname()


# ============================================================================
# In-process (threaded) fabric
# ============================================================================


class LocalWorld:
    """Shared state connecting the workers of one in-process run."""

    # Receive poll interval; lets blocked receivers notice an abort
    POLL_INTERVAL = 0.05

    def __init__(self, size: int):
        if size < 1:
            raise ValueError(f"World size must be positive, got {size}")
        self.size = size
        # Barrier state: arrivals in the current phase and completed phases
        self._cond = threading.Condition()
        self._arrived = 0
        self._generation = 0
        self._slots: List[Any] = [None] * size
        self._mailboxes = defaultdict(queue.Queue)
        self._lock = threading.Lock()
        self._aborted = threading.Event()

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    def fabric(self, rank: int) -> "LocalFabric":
        return LocalFabric(self, rank)

    def mailbox(self, source: int, dest: int, tag: int) -> queue.Queue:
        with self._lock:
            return self._mailboxes[(source, dest, tag)]

    def wait(self):
        """Block until all workers arrive.

        A phase that completed before an abort still returns normally on
        every worker; only workers left waiting in an open phase fail.
        """
        with self._cond:
            if self.aborted:
                raise FabricAbortedError("Run aborted by another worker")
            generation = self._generation
            self._arrived += 1
            if self._arrived == self.size:
                self._arrived = 0
                self._generation += 1
                self._cond.notify_all()
                return
            while generation == self._generation:
                if self.aborted:
                    raise FabricAbortedError("Run aborted by another worker")
                self._cond.wait()

    def abort(self):
        with self._cond:
            self._aborted.set()
            self._cond.notify_all()


class LocalFabric(Fabric):
    """Fabric for workers running as threads of one process.

    Sends are buffered (never block), so paired exchanges cannot deadlock.
    Collectives reduce in rank order, giving every worker the same value.
    """

    def __init__(self, world: LocalWorld, rank: int, dims: Optional[Tuple[int, int]] = None):
        self.world = world
        self.rank = rank
        self.size = world.size
        self.dims = dims

    def sendrecv(self, sendbuf, dest, recvbuf, source, tag=0):
        if dest is not None:
            self.world.mailbox(self.rank, dest, tag).put(np.array(sendbuf, copy=True))
        if source is not None:
            recvbuf[...] = self._receive(source, tag)

    def _receive(self, source: int, tag: int) -> np.ndarray:
        box = self.world.mailbox(source, self.rank, tag)
        while True:
            if self.world.aborted:
                raise FabricAbortedError("Run aborted by another worker")
            try:
                return box.get(timeout=self.world.POLL_INTERVAL)
            except queue.Empty:
                continue

    def _exchange(self, value: Any) -> List[Any]:
        """All-to-all of one object per worker (building block for collectives)."""
        self.world._slots[self.rank] = value
        self.world.wait()
        values = list(self.world._slots)
        # Second barrier: nobody overwrites a slot before everyone has read it
        self.world.wait()
        return values

    def allreduce_sum(self, value):
        return float(sum(self._exchange(float(value))))

    def allreduce_max(self, value):
        return float(max(self._exchange(float(value))))

    def bcast(self, obj, root=0):
        return self._exchange(obj if self.rank == root else None)[root]

    def gather(self, obj, root=0):
        values = self._exchange(obj)
        return values if self.rank == root else None

    def barrier(self):
        self.world.wait()

    def abort(self, errorcode=1):
        log.error(f"({self.rank} / {self.size}) Aborting run (error code {errorcode})")
        self.world.abort()

    def create_cart(self, dims):
        return LocalFabric(self.world, self.rank, dims=tuple(dims))

    def cart_coords(self):
        return cart_coords(self.rank, self._require_dims())

    def cart_shift(self, direction):
        return cart_shift(self.cart_coords(), self._require_dims(), direction)

    def _require_dims(self) -> Tuple[int, int]:
        if self.dims is None:
            raise RuntimeError("No Cartesian topology attached; call create_cart() first")
        return self.dims


def launch_local(size: int, target: Callable[[LocalFabric], Any]) -> List[Any]:
    """Run ``target(fabric)`` on ``size`` threaded workers.

    Returns the per-rank results. If any worker fails, the world is aborted
    so blocked peers unwind, and the first non-abort error is re-raised.
    """
    world = LocalWorld(size)

    def work(rank: int):
        fabric = world.fabric(rank)
        try:
            return target(fabric)
        except BaseException:
            world.abort()
            raise

    with ThreadPoolExecutor(max_workers=size, thread_name_prefix="worker") as pool:
        futures = [pool.submit(work, rank) for rank in range(size)]
        wait(futures)

    errors = [f.exception() for f in futures if f.exception() is not None]
    if errors:
        primary = next(
            (e for e in errors if not isinstance(e, FabricAbortedError)), errors[0]
        )
        raise primary
    return [f.result() for f in futures]

