"""Per-worker solution output and reassembly of the global field.

Each worker writes ``output{rank}.dat`` with one ``gx gy value`` line per
owned interior cell. The loaders here stitch those files back together.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .mpi.grid import DistributedGrid

log = logging.getLogger(__name__)

OUTPUT_COLUMNS = ["x", "y", "value"]


def output_path(directory: Union[str, Path], rank: int) -> Path:
    return Path(directory) / f"output{rank}.dat"


def write_output(grid: DistributedGrid, directory: Union[str, Path] = ".") -> Path:
    """Write this worker's interior cells as ``gx gy value`` lines."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = output_path(directory, grid.rank)

    gx, gy = grid.global_coords()
    X, Y = np.meshgrid(gx, gy, indexing="ij")
    values = grid.interior(grid.phi)
    table = np.column_stack([X.ravel(), Y.ravel(), values.ravel()])

    np.savetxt(path, table, fmt=["%i", "%i", "%f"])
    log.debug(f"({grid.rank}) wrote {values.size} cells to {path}")
    return path


def load_output(path: Union[str, Path]) -> pd.DataFrame:
    """Load one worker's output file."""
    return pd.read_csv(
        path,
        sep=r"\s+",
        header=None,
        names=OUTPUT_COLUMNS,
        dtype={"x": np.int64, "y": np.int64, "value": np.float64},
    )


def assemble_outputs(
    paths: Iterable[Union[str, Path]], shape: Optional[Tuple[int, int]] = None
) -> np.ndarray:
    """Stitch per-worker output files into the global field.

    Parameters
    ----------
    paths : iterable of path
        Output files of all workers.
    shape : tuple of int, optional
        Global (nx, ny); inferred from the largest coordinates if omitted.

    Returns
    -------
    np.ndarray
        Array of shape (nx, ny); entry ``[gx - 1, gy - 1]`` holds cell (gx, gy).
    """
    frames = [load_output(p) for p in paths]
    if not frames:
        raise ValueError("No output files given")
    df = pd.concat(frames, ignore_index=True)

    if df.duplicated(subset=["x", "y"]).any():
        raise ValueError("Output files overlap: a cell is written by more than one worker")

    if shape is None:
        shape = (int(df["x"].max()), int(df["y"].max()))

    field = np.full(shape, np.nan)
    field[df["x"].to_numpy() - 1, df["y"].to_numpy() - 1] = df["value"].to_numpy()
    return field


def assemble_directory(directory: Union[str, Path], shape: Optional[Tuple[int, int]] = None) -> np.ndarray:
    """Assemble every ``output*.dat`` file found in ``directory``."""
    paths = sorted(Path(directory).glob("output*.dat"))
    return assemble_outputs(paths, shape=shape)


def plot_field(field: np.ndarray, path: Union[str, Path], title: str = "Solution"):
    """Save a heat map of the assembled field."""
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    fig, ax = plt.subplots(figsize=(6, 5))
    im = ax.imshow(field.T, origin="lower", cmap="viridis",
                   extent=(0.5, field.shape[0] + 0.5, 0.5, field.shape[1] + 0.5))
    fig.colorbar(im, ax=ax, label=r"$\phi$")
    ax.set_xlabel("x")
    ax.set_ylabel("y")
    ax.set_title(title)
    fig.tight_layout()
    fig.savefig(path, dpi=120)
    plt.close(fig)
    return Path(path)
