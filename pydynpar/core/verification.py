"""
Host-side reference results and comparison.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


def dynamic_parallelism_reference(
    num_parent_threads: int,
    num_child_threads: int,
) -> NDArray[np.float32]:
    """
    Expected output of the dynamic parallelism demo kernel.

    Element ``i * num_child_threads + j`` holds ``i + 0.1 * j``, computed
    in single precision with separate rounding of the product and sum.
    """
    parents = np.arange(num_parent_threads, dtype=np.float32)
    children = np.arange(num_child_threads, dtype=np.float32)
    values = parents[:, None] + np.float32(0.1) * children[None, :]
    return values.reshape(-1).astype(np.float32, copy=False)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of an element-wise comparison."""

    passed: bool
    element_count: int
    mismatch_count: int = 0
    first_mismatch: int | None = None

    @property
    def verdict(self) -> str:
        """'PASSED' or 'FAILED'."""
        return "PASSED" if self.passed else "FAILED"


def verify_exact(result: NDArray[Any], reference: NDArray[Any]) -> VerificationResult:
    """
    Compare two arrays for exact element-wise equality.

    Arrays of different length never match. Two empty arrays match.
    """
    result = np.asarray(result).reshape(-1)
    reference = np.asarray(reference).reshape(-1)

    if result.shape != reference.shape:
        return VerificationResult(
            passed=False,
            element_count=result.size,
            mismatch_count=abs(result.size - reference.size),
            first_mismatch=min(result.size, reference.size),
        )

    mismatches = np.flatnonzero(result != reference)
    return VerificationResult(
        passed=mismatches.size == 0,
        element_count=result.size,
        mismatch_count=int(mismatches.size),
        first_mismatch=int(mismatches[0]) if mismatches.size else None,
    )
