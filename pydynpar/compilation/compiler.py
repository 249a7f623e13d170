"""
Ahead-of-time kernel compiler for pydynpar.

Turns a CUDA source file into a cubin or PTX artifact by running nvcc
as a subprocess.
"""

from __future__ import annotations

import logging
import struct
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path

from pydynpar.compilation.cache import ArtifactCache, artifact_path
from pydynpar.exceptions import (
    CompilationError,
    CompilationInterruptedError,
    InputNotFoundError,
    InvalidConfigurationError,
)

logger = logging.getLogger(__name__)

SUPPORTED_ARTIFACT_TYPES = ("cubin", "ptx")


def host_pointer_width() -> int:
    """Pointer width of the running interpreter in bits (32 or 64)."""
    return struct.calcsize("P") * 8


@dataclass
class CompilationOptions:
    """Options for a single nvcc invocation."""

    artifact_type: str = "cubin"  # cubin, ptx
    compute_capability: int | None = None  # major * 10 + minor
    force_rebuild: bool = False
    link_device_code: bool = True  # -dlink
    nvcc_path: str = "nvcc"
    extra_args: tuple[str, ...] = ()
    pointer_width: int = field(default_factory=host_pointer_width)
    timeout: float | None = None

    def __post_init__(self) -> None:
        """Validate options."""
        artifact_type = self.artifact_type.lower()
        if artifact_type not in SUPPORTED_ARTIFACT_TYPES:
            raise InvalidConfigurationError(
                "artifact_type",
                self.artifact_type,
                'target file type must be "ptx" or "cubin"',
            )
        self.artifact_type = artifact_type
        self.extra_args = tuple(self.extra_args)

    @property
    def arch(self) -> str | None:
        """The -arch value, e.g. 'sm_86'."""
        if self.compute_capability is None:
            return None
        return f"sm_{self.compute_capability}"


@dataclass(frozen=True)
class CompiledArtifact:
    """A compiled artifact on disk."""

    source_path: Path
    artifact_path: Path
    artifact_type: str
    compute_capability: int | None
    cached: bool = False
    compile_time_ms: float = 0.0


class NvccCompiler:
    """
    Compiler that shells out to nvcc.

    Example:
        >>> compiler = NvccCompiler()
        >>> options = CompilationOptions(compute_capability=86)
        >>> artifact = compiler.compile("kernels/demo.cu", options)
        >>> artifact.artifact_path
        PosixPath('kernels/demo.cubin')
    """

    def __init__(
        self,
        options: CompilationOptions | None = None,
        cache: ArtifactCache | None = None,
    ) -> None:
        """
        Initialize the compiler.

        Args:
            options: Default options for compile() calls.
            cache: Artifact cache (a new one if None).
        """
        self._options = options or CompilationOptions()
        self._cache = cache or ArtifactCache()
        self._invocations = 0

    @property
    def options(self) -> CompilationOptions:
        """Default compilation options."""
        return self._options

    @property
    def cache(self) -> ArtifactCache:
        """The artifact cache."""
        return self._cache

    @property
    def invocations(self) -> int:
        """Number of times nvcc has been run."""
        return self._invocations

    def build_command(
        self,
        source: str | Path,
        output: str | Path,
        options: CompilationOptions,
    ) -> list[str]:
        """
        Build the nvcc command line.

        Returns:
            ``[nvcc, -m64, -cubin, -dlink, -arch=sm_NN, *extra, source, -o, output]``
        """
        command = [
            options.nvcc_path,
            f"-m{options.pointer_width}",
            f"-{options.artifact_type}",
        ]
        if options.link_device_code:
            command.append("-dlink")
        if options.arch is not None:
            command.append(f"-arch={options.arch}")
        command.extend(options.extra_args)
        command.extend([str(source), "-o", str(output)])
        return command

    def compile(
        self,
        source: str | Path,
        options: CompilationOptions | None = None,
    ) -> CompiledArtifact:
        """
        Compile ``source`` unless its artifact already exists.

        Args:
            source: CUDA source file.
            options: Compilation options (uses instance options if None).

        Returns:
            The compiled (or reused) artifact.

        Raises:
            InputNotFoundError: If ``source`` does not exist.
            CompilationError: If nvcc cannot be run or exits non-zero.
            CompilationInterruptedError: If interrupted while waiting for nvcc.
        """
        opts = options or self._options
        source = Path(source)
        output = artifact_path(source, opts.artifact_type)

        if not source.exists():
            raise InputNotFoundError(source)

        logger.info(f"Creating {opts.artifact_type} file for {source}")

        cached = self._cache.lookup(source, opts.artifact_type, force_rebuild=opts.force_rebuild)
        if cached is not None:
            return CompiledArtifact(
                source_path=source,
                artifact_path=cached,
                artifact_type=opts.artifact_type,
                compute_capability=opts.compute_capability,
                cached=True,
            )

        command = self.build_command(source, output, opts)
        start_time = time.perf_counter()
        self._run(command, opts)
        compile_time = (time.perf_counter() - start_time) * 1000

        if not output.exists():
            raise CompilationError(
                f"Could not create {opts.artifact_type} file: "
                f"{opts.nvcc_path} did not write {output}"
            )

        logger.info(f"Finished creating {opts.artifact_type} file")
        return CompiledArtifact(
            source_path=source,
            artifact_path=output,
            artifact_type=opts.artifact_type,
            compute_capability=opts.compute_capability,
            cached=False,
            compile_time_ms=compile_time,
        )

    def _run(self, command: list[str], options: CompilationOptions) -> None:
        """Run nvcc, draining stdout and stderr together before checking the exit status."""
        logger.info("Executing\n" + " ".join(command))
        self._invocations += 1

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=options.timeout,
            )
        except KeyboardInterrupt:
            raise CompilationInterruptedError(command) from None
        except subprocess.TimeoutExpired as e:
            raise CompilationError(
                f"Could not create {options.artifact_type} file: "
                f"{options.nvcc_path} timed out after {options.timeout}s"
            ) from e
        except OSError as e:
            raise CompilationError(
                f"Could not create {options.artifact_type} file: {e}"
            ) from e

        if result.returncode != 0:
            logger.error(f"nvcc process exitValue {result.returncode}")
            logger.error(f"errorMessage:\n{result.stderr}")
            logger.error(f"outputMessage:\n{result.stdout}")
            raise CompilationError(
                f"Could not create {options.artifact_type} file: {result.stderr}",
                stderr=result.stderr,
                stdout=result.stdout,
                returncode=result.returncode,
            )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"NvccCompiler(nvcc={self._options.nvcc_path!r}, "
            f"invocations={self._invocations}, {self._cache!r})"
        )


def prepare_default_artifact(
    source: str | Path,
    compute_capability: int,
    *,
    compiler: NvccCompiler | None = None,
    force_rebuild: bool = True,
    artifact_type: str = "cubin",
) -> CompiledArtifact:
    """
    Build a cubin for ``source`` targeting ``sm_<compute_capability>``.

    Rebuilds by default, like the original demo program did.
    """
    compiler = compiler or get_compiler()
    options = CompilationOptions(
        artifact_type=artifact_type,
        compute_capability=compute_capability,
        force_rebuild=force_rebuild,
        nvcc_path=compiler.options.nvcc_path,
    )
    return compiler.compile(source, options)


# Global compiler instance
_global_compiler: NvccCompiler | None = None


def get_compiler() -> NvccCompiler:
    """Get the global compiler instance."""
    global _global_compiler
    if _global_compiler is None:
        _global_compiler = NvccCompiler()
    return _global_compiler
