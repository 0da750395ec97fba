"""Tests for problem file parsing and distribution."""

import pytest

from Poisson2D import (
    ConfigurationError,
    GlobalParams,
    PointSource,
    Problem,
    ProblemFileError,
    broadcast_problem,
    launch_local,
    parse_problem,
    read_problem_file,
    run_local,
    write_problem_file,
)

VALID = """\
nx: 20
ny: 10
precision goal: 0.0001
max iterations: 500
source: 0.5 0.5 1.0
source: 0.25 0.75 -2.5
"""


class TestParseProblem:

    def test_valid_file(self):
        problem = parse_problem(VALID)

        assert problem.shape == (20, 10)
        assert problem.precision_goal == 1e-4
        assert problem.max_iter == 500
        assert problem.sources == (PointSource(0.5, 0.5, 1.0), PointSource(0.25, 0.75, -2.5))

    def test_no_sources(self):
        problem = parse_problem("nx: 4\nny: 4\nprecision goal: 0\nmax iterations: 1\n")
        assert problem.sources == ()
        assert problem.precision_goal == 0.0

    def test_sources_stop_at_first_other_line(self):
        text = VALID + "# trailing comment\nsource: 0.1 0.1 9.0\n"
        assert len(parse_problem(text).sources) == 2

    def test_blank_lines_ignored(self):
        assert parse_problem(VALID.replace("\n", "\n\n")).nx == 20

    @pytest.mark.parametrize(
        "text,match",
        [
            ("nx: 20\nny: 10\n", "header lines"),
            ("nx: 20\nny: ten\nprecision goal: 1\nmax iterations: 5\n", "invalid ny"),
            ("ny: 20\nnx: 10\nprecision goal: 1\nmax iterations: 5\n", "expected 'nx"),
            ("nx: 0\nny: 10\nprecision goal: 1\nmax iterations: 5\n", "positive"),
            ("nx: 5\nny: 10\nprecision goal: -1\nmax iterations: 5\n", "non-negative"),
            ("nx: 5\nny: 10\nprecision goal: 1\nmax iterations: 0\n", "max_iter"),
        ],
    )
    def test_malformed(self, text, match):
        with pytest.raises(ProblemFileError, match=match):
            parse_problem(text)

    def test_problem_error_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            parse_problem("")


class TestProblemFiles:

    def test_read_written_file(self, tmp_path, mixed_problem):
        path = write_problem_file(mixed_problem, tmp_path / "problem.dat")
        assert read_problem_file(path) == mixed_problem

    def test_missing_file(self, tmp_path):
        with pytest.raises(ProblemFileError, match="Error opening"):
            read_problem_file(tmp_path / "nope.dat")

    def test_sources_stored_as_tuple(self):
        problem = Problem(4, 4, 0.0, 1, [PointSource(0.1, 0.2, 1.0)])
        assert isinstance(problem.sources, tuple)

    def test_source_cell(self):
        assert PointSource(0.5, 0.5, 1.0).cell(11, 11) == (6, 6)
        assert PointSource(0.0, 0.99, 1.0).cell(10, 10) == (1, 10)


class TestBroadcastProblem:

    def test_every_worker_gets_the_problem(self, tmp_path):
        path = tmp_path / "input.dat"
        path.write_text(VALID)

        problems = launch_local(3, lambda f: broadcast_problem(f, path))
        assert all(p == problems[0] for p in problems)
        assert problems[0].nx == 20

    def test_read_failure_raised_on_every_worker(self, tmp_path):
        """Only rank 0 reads, but every worker fails the same way."""
        missing = tmp_path / "missing.dat"
        seen = []

        def target(fabric):
            try:
                broadcast_problem(fabric, missing)
            except ProblemFileError:
                seen.append(fabric.rank)
                raise

        with pytest.raises(ProblemFileError):
            launch_local(4, target)
        assert sorted(seen) == [0, 1, 2, 3]

    def test_no_problem_file_configured(self):
        with pytest.raises(ProblemFileError, match="No problem file"):
            run_local(GlobalParams(px=2, py=1, write_output=False))
