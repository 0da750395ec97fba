"""Problem file I/O and distribution to the workers.

File format::

    nx: 100
    ny: 100
    precision goal: 0.0001
    max iterations: 5000
    source: 0.5 0.5 1.0
    source: 0.25 0.75 -1.0

Source records are read until the first line that is not one, or EOF.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Union

from .datastructures import PointSource, Problem
from .errors import ConfigurationError, ProblemFileError

if TYPE_CHECKING:
    from .mpi.fabric import Fabric

log = logging.getLogger(__name__)

_HEADER = (
    ("nx", int),
    ("ny", int),
    ("precision goal", float),
    ("max iterations", int),
)
_SOURCE = re.compile(r"^\s*source:\s*(\S+)\s+(\S+)\s+(\S+)\s*$")


def _parse_header_line(line: str, label: str, cast, lineno: int):
    key, sep, value = line.partition(":")
    if not sep or key.strip().lower() != label:
        raise ProblemFileError(f"line {lineno}: expected '{label}: <value>', got {line.strip()!r}")
    try:
        return cast(value.strip())
    except ValueError:
        raise ProblemFileError(
            f"line {lineno}: invalid {label} value {value.strip()!r}"
        ) from None


def parse_problem(text: str) -> Problem:
    """Parse the contents of a problem file."""
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < len(_HEADER):
        raise ProblemFileError(
            f"Problem file needs {len(_HEADER)} header lines, found {len(lines)}"
        )

    values = [
        _parse_header_line(line, label, cast, i + 1)
        for i, (line, (label, cast)) in enumerate(zip(lines, _HEADER))
    ]

    sources = []
    for line in lines[len(_HEADER):]:
        match = _SOURCE.match(line)
        if match is None:
            log.debug(f"Stopped reading sources at {line.strip()!r}")
            break
        try:
            x, y, value = (float(v) for v in match.groups())
        except ValueError:
            break
        sources.append(PointSource(x, y, value))

    nx, ny, precision_goal, max_iter = values
    try:
        return Problem(nx, ny, precision_goal, max_iter, tuple(sources))
    except ConfigurationError as exc:
        raise ProblemFileError(str(exc)) from None


def read_problem_file(path: Union[str, Path]) -> Problem:
    """Read a problem file from disk."""
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as exc:
        raise ProblemFileError(f"Error opening {path}: {exc.strerror or exc}") from None
    return parse_problem(text)


def write_problem_file(problem: Problem, path: Union[str, Path]) -> Path:
    """Write ``problem`` in the format read by :func:`read_problem_file`."""
    path = Path(path)
    lines = [
        f"nx: {problem.nx}",
        f"ny: {problem.ny}",
        f"precision goal: {problem.precision_goal!r}",
        f"max iterations: {problem.max_iter}",
    ]
    lines += [f"source: {s.x!r} {s.y!r} {s.value!r}" for s in problem.sources]
    path.write_text("\n".join(lines) + "\n")
    return path


def broadcast_problem(fabric: "Fabric", path: Union[str, Path, None], root: int = 0) -> Problem:
    """Read the problem on ``root`` and replicate it on every worker.

    Collective. A read failure on ``root`` is broadcast too, so every
    worker raises ProblemFileError instead of waiting on a dead peer.
    """
    payload = None
    if fabric.rank == root:
        try:
            if path is None:
                raise ProblemFileError("No problem file given")
            payload = read_problem_file(path)
        except ProblemFileError as exc:
            payload = exc

    payload = fabric.bcast(payload, root=root)
    if isinstance(payload, ProblemFileError):
        raise ProblemFileError(str(payload))

    log.debug(
        f"({fabric.rank}) problem {payload.nx}x{payload.ny}, goal={payload.precision_goal}, "
        f"max_iter={payload.max_iter}, {len(payload.sources)} source(s)"
    )
    return payload
