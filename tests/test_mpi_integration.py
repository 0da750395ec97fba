"""MPI integration tests - spawn actual MPI processes via spawn_mpi."""

import os
import shutil
from pathlib import Path

import numpy as np
import pytest

from Poisson2D import GlobalParams, run_local, write_problem_file
from Poisson2D.postprocessing import assemble_directory
from Poisson2D.runner import spawn_mpi


def mpi_available() -> bool:
    if shutil.which("mpiexec") is None:
        return False
    try:
        from mpi4py import MPI  # noqa: F401
    except (ImportError, RuntimeError):
        return False
    return True


pytestmark = [
    pytest.mark.mpi,
    pytest.mark.skipif(not mpi_available(), reason="mpi4py or mpiexec not available"),
]

SRC = str(Path(__file__).resolve().parents[1] / "src")


@pytest.fixture(autouse=True)
def mpi_env(monkeypatch):
    """Let Open MPI run in containers (as root, oversubscribed)."""
    monkeypatch.setenv("OMPI_ALLOW_RUN_AS_ROOT", "1")
    monkeypatch.setenv("OMPI_ALLOW_RUN_AS_ROOT_CONFIRM", "1")
    monkeypatch.setenv("OMPI_MCA_rmaps_base_oversubscribe", "1")
    monkeypatch.setenv("PRTE_MCA_rmaps_default_mapping_policy", ":oversubscribe")
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join(filter(None, [SRC, os.environ.get("PYTHONPATH")])))


@pytest.fixture(scope="module")
def local_reference(tmp_path_factory, mixed_problem_module):
    out = tmp_path_factory.mktemp("local")
    params = GlobalParams(px=1, py=1, method="sor", omega=1.5, output_dir=str(out))
    run_local(params, problem=mixed_problem_module)
    return assemble_directory(out, shape=mixed_problem_module.shape)


@pytest.fixture(scope="module")
def mixed_problem_module():
    from Poisson2D import PointSource, Problem

    return Problem(
        nx=14, ny=9, precision_goal=1e-10, max_iter=5000,
        sources=(PointSource(0.25, 0.25, 1.0), PointSource(0.75, 0.75, -1.0)),
    )


@pytest.mark.parametrize("halo_exchange", ["numpy", "custom"])
def test_mpi_matches_local(tmp_path, local_reference, mixed_problem_module, halo_exchange):
    """Two MPI processes reproduce the single-worker SOR field."""
    problem_file = write_problem_file(mixed_problem_module, tmp_path / "input.dat")
    out = tmp_path / "out"
    params = GlobalParams(
        px=2, py=1, method="sor", omega=1.5, halo_exchange=halo_exchange,
        problem_file=str(problem_file), output_dir=str(out),
    )

    result = spawn_mpi(params, timeout=300)

    assert result.returncode == 0
    field = assemble_directory(out, shape=mixed_problem_module.shape)
    assert np.allclose(field, local_reference, atol=1e-6)


def test_mpi_failure_exits_nonzero(tmp_path):
    """A missing problem file aborts every rank and fails the launch."""
    params = GlobalParams(px=2, py=1, problem_file=str(tmp_path / "missing.dat"),
                          output_dir=str(tmp_path / "out"))
    with pytest.raises(RuntimeError, match="mpiexec exited"):
        spawn_mpi(params, timeout=300)
