"""
Device kernel sources shipped with pydynpar.
"""

from pathlib import Path

KERNEL_DIR = Path(__file__).parent

# parentKernel(unsigned int size, float *data)
DYNAMIC_PARALLELISM_SOURCE = KERNEL_DIR / "dynamic_parallelism.cu"
DYNAMIC_PARALLELISM_ENTRY_POINT = "parentKernel"

__all__ = [
    "KERNEL_DIR",
    "DYNAMIC_PARALLELISM_SOURCE",
    "DYNAMIC_PARALLELISM_ENTRY_POINT",
]
