"""Domain decomposition and communication.

This package provides:
- Fabric / LocalFabric: Communication fabric interface and threaded backend
- MPIFabric (``Poisson2D.mpi.comm``): mpi4py backend, imported on demand
- create_topology / DomainDecomposition: Process grid and domain splitting
- HaloExchanger: Strategies for halo exchange (numpy/datatype)
- DistributedGrid: One worker's tile with halo ring and source mask
"""

from .fabric import Fabric, LocalFabric, LocalWorld, launch_local
from .decomposition import (
    DomainDecomposition,
    ProcessTopology,
    create_topology,
    split_axis,
)
from .halo import HaloExchanger, NumpyHaloExchanger, DatatypeHaloExchanger
from .grid import DistributedGrid

__all__ = [
    "Fabric",
    "LocalFabric",
    "LocalWorld",
    "launch_local",
    "DomainDecomposition",
    "ProcessTopology",
    "create_topology",
    "split_axis",
    "HaloExchanger",
    "NumpyHaloExchanger",
    "DatatypeHaloExchanger",
    "DistributedGrid",
]
