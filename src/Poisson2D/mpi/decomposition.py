"""Process topology and domain decomposition.

Workers form a non-periodic ``Px x Py`` grid embedded row-major
(``rank = cx * Py + cy``, the MPI Cartesian default). The x axis (direction
0) links left/right neighbours, the y axis (direction 1) top/bottom ones.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from ..datastructures import RankGeometry
from ..errors import TopologyError

if TYPE_CHECKING:
    from .fabric import Fabric

log = logging.getLogger(__name__)

X_DIR, Y_DIR = 0, 1

# Neighbour names as (lower, upper) along each direction
DIRECTION_NAMES = {X_DIR: ("left", "right"), Y_DIR: ("top", "bottom")}


def validate_dims(px: int, py: int, size: int):
    """Fail unless the requested process grid exactly factors ``size``."""
    if px < 1 or py < 1:
        raise TopologyError(f"Process grid dimensions must be positive, got {px}x{py}")
    if px * py != size:
        raise TopologyError(
            f"Process grid dimensions do not match with P: {px}x{py} != {size}"
        )


def cart_coords(rank: int, dims: Tuple[int, int]) -> Tuple[int, int]:
    """Coordinates of ``rank`` in a row-major Cartesian grid."""
    return rank // dims[1], rank % dims[1]


def cart_rank(coords: Tuple[int, int], dims: Tuple[int, int]) -> Optional[int]:
    """Rank at ``coords``, or None if outside the (non-periodic) grid."""
    cx, cy = coords
    if not (0 <= cx < dims[0] and 0 <= cy < dims[1]):
        return None
    return cx * dims[1] + cy


def cart_shift(
    coords: Tuple[int, int], dims: Tuple[int, int], direction: int
) -> Tuple[Optional[int], Optional[int]]:
    """(lower, upper) neighbour ranks along ``direction`` without wraparound."""
    lower = list(coords)
    upper = list(coords)
    lower[direction] -= 1
    upper[direction] += 1
    return cart_rank(tuple(lower), dims), cart_rank(tuple(upper), dims)


def cart_neighbors(coords: Tuple[int, int], dims: Tuple[int, int]) -> Dict[str, Optional[int]]:
    """All four neighbours of the worker at ``coords``."""
    neighbors = {}
    for direction, (lo_name, hi_name) in DIRECTION_NAMES.items():
        lo, hi = cart_shift(coords, dims, direction)
        neighbors[lo_name] = lo
        neighbors[hi_name] = hi
    return neighbors


def split_axis(n: int, parts: int, index: int) -> Tuple[int, int]:
    """Owned half-open range ``[start, end)`` of ``n`` cells for part ``index``.

    Integer-division boundaries: sizes differ by at most one cell and every
    cell is owned exactly once.
    """
    return n * index // parts, n * (index + 1) // parts


@dataclass(frozen=True)
class ProcessTopology:
    """This worker's place in the process grid. Immutable after creation."""

    rank: int
    size: int
    dims: Tuple[int, int]
    coords: Tuple[int, int]
    neighbors: Dict[str, Optional[int]]

    @property
    def top(self) -> Optional[int]:
        return self.neighbors["top"]

    @property
    def bottom(self) -> Optional[int]:
        return self.neighbors["bottom"]

    @property
    def left(self) -> Optional[int]:
        return self.neighbors["left"]

    @property
    def right(self) -> Optional[int]:
        return self.neighbors["right"]


def create_topology(fabric: "Fabric", px: int, py: int) -> Tuple["Fabric", ProcessTopology]:
    """Attach a ``px x py`` Cartesian topology to ``fabric``.

    Every worker runs the same check on the same inputs, so a mismatch is
    rejected consistently everywhere before anything is allocated.

    Returns
    -------
    tuple
        (cartesian fabric, ProcessTopology)
    """
    validate_dims(px, py, fabric.size)

    cart = fabric.create_cart((px, py))
    coords = tuple(cart.cart_coords())

    neighbors = {}
    for direction, (lo_name, hi_name) in DIRECTION_NAMES.items():
        lo, hi = cart.cart_shift(direction)
        neighbors[lo_name] = lo
        neighbors[hi_name] = hi

    topology = ProcessTopology(
        rank=cart.rank, size=cart.size, dims=(px, py), coords=coords, neighbors=neighbors
    )
    log.debug(
        f"({topology.rank}) (x,y)=({coords[0]},{coords[1]}) top {neighbors['top']}, "
        f"right {neighbors['right']}, bottom {neighbors['bottom']}, left {neighbors['left']}"
    )
    return cart, topology


class DomainDecomposition:
    """Splits an ``nx x ny`` grid over a ``Px x Py`` process grid.

    Pure geometry, no communication: usable on any rank (or none) to
    inspect how the domain is distributed.

    Parameters
    ----------
    nx, ny : int
        Global interior grid size.
    dims : tuple of int
        Process grid shape (Px, Py).
    """

    def __init__(self, nx: int, ny: int, dims: Tuple[int, int]):
        self.nx = nx
        self.ny = ny
        self.dims = tuple(dims)
        self.size = self.dims[0] * self.dims[1]

    def geometry(self, coords: Tuple[int, int], rank: Optional[int] = None) -> RankGeometry:
        """Tile geometry for the worker at ``coords``."""
        cx, cy = coords
        x0, x1 = split_axis(self.nx, self.dims[0], cx)
        y0, y1 = split_axis(self.ny, self.dims[1], cy)
        if rank is None:
            rank = cart_rank(coords, self.dims)
        return RankGeometry(
            rank=rank,
            coords=(cx, cy),
            offset=(x0, y0),
            local_shape=(x1 - x0, y1 - y0),
            neighbors=cart_neighbors(coords, self.dims),
        )

    def get_rank_info(self, rank: int) -> RankGeometry:
        """Tile geometry for ``rank`` under the row-major embedding."""
        return self.geometry(cart_coords(rank, self.dims), rank=rank)
