"""
Launch geometry for device kernels.

Computes grid dimensions from an element count and builds the
descriptor that is handed to a backend for submission.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydynpar.exceptions import InvalidConfigurationError

if TYPE_CHECKING:
    from pydynpar.backends.base import KernelFunction

# Hardware limit on threads per block for every current CUDA architecture
MAX_THREADS_PER_BLOCK = 1024


class GridFormula(Enum):
    """How the number of blocks is derived from the element count."""

    # (n + n - 1) // threads, as written in the original demo program
    LITERAL = "literal"
    # (n + threads - 1) // threads, conventional ceiling division
    CEIL = "ceil"


def compute_grid_size(
    element_count: int,
    threads_per_block: int,
    formula: GridFormula = GridFormula.LITERAL,
) -> int:
    """
    Compute the number of blocks along the x dimension.

    Args:
        element_count: Number of output elements.
        threads_per_block: Block size along x.
        formula: Grid formula to apply.

    Returns:
        Grid size. Zero when there are no elements.

    Raises:
        InvalidConfigurationError: If an argument is out of range.
    """
    if threads_per_block < 1:
        raise InvalidConfigurationError(
            "threads_per_block", threads_per_block, "must be at least 1"
        )
    if element_count < 0:
        raise InvalidConfigurationError("element_count", element_count, "must not be negative")

    if element_count == 0:
        return 0

    if formula is GridFormula.LITERAL:
        return (element_count + element_count - 1) // threads_per_block
    return (element_count + threads_per_block - 1) // threads_per_block


@dataclass
class LaunchConfig:
    """Configuration for a single kernel launch."""

    element_count: int
    threads_per_block: int
    grid_formula: GridFormula = GridFormula.LITERAL
    shared_memory_bytes: int = 0

    def __post_init__(self) -> None:
        """Validate configuration."""
        if isinstance(self.grid_formula, str):
            self.grid_formula = GridFormula(self.grid_formula)
        if self.element_count < 0:
            raise InvalidConfigurationError(
                "element_count", self.element_count, "must not be negative"
            )
        if self.threads_per_block < 1:
            raise InvalidConfigurationError(
                "threads_per_block", self.threads_per_block, "must be at least 1"
            )
        if self.shared_memory_bytes < 0:
            raise InvalidConfigurationError(
                "shared_memory_bytes", self.shared_memory_bytes, "must not be negative"
            )

    @classmethod
    def for_dynamic_parallelism(
        cls,
        num_parent_threads: int,
        num_child_threads: int,
        grid_formula: GridFormula = GridFormula.LITERAL,
    ) -> LaunchConfig:
        """
        Build the launch configuration of the parent/child demo kernel.

        Each parent thread owns ``num_child_threads`` consecutive elements.
        """
        if num_child_threads < 0:
            raise InvalidConfigurationError(
                "num_child_threads", num_child_threads, "must not be negative"
            )
        return cls(
            element_count=num_parent_threads * num_child_threads,
            threads_per_block=num_parent_threads,
            grid_formula=grid_formula,
        )

    @property
    def grid_size(self) -> int:
        """Number of blocks along x."""
        return compute_grid_size(self.element_count, self.threads_per_block, self.grid_formula)

    @property
    def is_empty(self) -> bool:
        """True when the launch has no work to do."""
        return self.element_count == 0


@dataclass
class KernelLaunchDescriptor:
    """Everything a backend needs to submit one kernel launch."""

    function: KernelFunction
    grid: tuple[int, int, int]
    block: tuple[int, int, int]
    shared_memory_bytes: int = 0
    params: tuple[Any, ...] = field(default_factory=tuple)

    @classmethod
    def from_config(
        cls,
        function: KernelFunction,
        config: LaunchConfig,
        params: tuple[Any, ...],
    ) -> KernelLaunchDescriptor:
        """Build a one-dimensional launch from a LaunchConfig."""
        return cls(
            function=function,
            grid=(config.grid_size, 1, 1),
            block=(config.threads_per_block, 1, 1),
            shared_memory_bytes=config.shared_memory_bytes,
            params=params,
        )

    @property
    def total_threads(self) -> int:
        """Total number of threads across the grid."""
        gx, gy, gz = self.grid
        bx, by, bz = self.block
        return gx * gy * gz * bx * by * bz
