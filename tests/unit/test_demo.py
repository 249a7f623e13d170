"""
Unit tests for the demo command line.
"""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from pydynpar.backends.cpu import CPUBackend
from pydynpar.demo import build_parser, main, run_demo


def run_cli(fake_nvcc, kernel_source: Path, *extra: str) -> int:
    return main(
        [
            "--backend",
            "cpu",
            "--nvcc",
            str(fake_nvcc.path),
            "--source",
            str(kernel_source),
            *extra,
        ]
    )


class TestParser:
    """Tests for argument parsing."""

    def test_defaults(self) -> None:
        """Test that defaults follow the original demo program."""
        args = build_parser().parse_args([])

        assert args.parent_threads == 8
        assert args.child_threads == 0
        assert args.entry_point == "parentKernel"
        assert args.artifact_type == "cubin"
        assert args.grid_formula == "literal"
        assert args.no_rebuild is False
        assert args.backend == "cuda"
        assert args.source.endswith("dynamic_parallelism.cu")
        assert args.nvcc_arg == []

    def test_invalid_backend(self) -> None:
        """Test that unknown backends are rejected by argparse."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--backend", "opencl"])


class TestMain:
    """Tests for the demo entry point."""

    def test_default_configuration(
        self, fake_nvcc, kernel_source: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test the zero-element run of the original demo."""
        assert run_cli(fake_nvcc, kernel_source) == 0

        out = capsys.readouterr().out.strip().splitlines()
        assert len(out) == 1
        assert out[0].startswith("Result: [] PASSED (")
        assert out[0].endswith(" ms)")

    def test_children(self, fake_nvcc, kernel_source: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """Test a run that computes values."""
        code = run_cli(fake_nvcc, kernel_source, "--parent-threads", "2", "--child-threads", "2")

        assert code == 0
        out = capsys.readouterr().out
        assert "Result: [0.0, 0.1, 1.0, 1.1] PASSED" in out

    def test_always_rebuilds(self, fake_nvcc, kernel_source: Path) -> None:
        """Test that nvcc runs on every invocation by default."""
        run_cli(fake_nvcc, kernel_source)
        run_cli(fake_nvcc, kernel_source)

        assert len(fake_nvcc.calls) == 2

    def test_no_rebuild(self, fake_nvcc, kernel_source: Path) -> None:
        """Test reusing the artifact."""
        run_cli(fake_nvcc, kernel_source, "--no-rebuild")
        run_cli(fake_nvcc, kernel_source, "--no-rebuild")

        assert len(fake_nvcc.calls) == 1

    def test_extra_nvcc_args(self, fake_nvcc, kernel_source: Path) -> None:
        """Test that --nvcc-arg values reach the command line in order."""
        run_cli(fake_nvcc, kernel_source, "--nvcc-arg=-rdc=true", "--nvcc-arg=-lcudadevrt")

        assert "-arch=sm_86 -rdc=true -lcudadevrt " in fake_nvcc.calls[0]

    def test_compilation_error(
        self, failing_nvcc, kernel_source: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test that a failure is reported on stderr without a verdict."""
        assert run_cli(failing_nvcc, kernel_source) == 1

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "error: Could not create cubin file" in captured.err
        assert "undefinedThing" in captured.err

    def test_missing_source(
        self, fake_nvcc, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Test a missing source file."""
        assert run_cli(fake_nvcc, tmp_path / "nope.cu") == 1
        assert "Input file not found" in capsys.readouterr().err


class TestRunDemo:
    """Tests for run_demo."""

    def test_time_includes_initialization(
        self, fake_nvcc, kernel_source: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that device initialization counts toward the elapsed time."""
        initialize = CPUBackend.initialize

        def slow_initialize(self, device_ordinal: int = 0):
            time.sleep(0.05)
            return initialize(self, device_ordinal)

        monkeypatch.setattr(CPUBackend, "initialize", slow_initialize)
        args = build_parser().parse_args(
            ["--backend", "cpu", "--nvcc", str(fake_nvcc.path), "--source", str(kernel_source)]
        )

        report = run_demo(args)

        assert report.passed
        assert report.duration_ms >= 50
