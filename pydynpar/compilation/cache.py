"""
Artifact cache for ahead-of-time compiled kernels.

Artifacts are written next to their source file, with the source
extension replaced by the artifact type. An artifact counts as cached
when that file exists. Contents and timestamps are not compared, so a
stale artifact is reused until it is invalidated or rebuilt.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def artifact_path(source: str | Path, artifact_type: str) -> Path:
    """
    Derive the artifact path for a source file.

    Args:
        source: Device source file, e.g. ``kernels/foo.cu``.
        artifact_type: ``cubin`` or ``ptx``.

    Returns:
        ``kernels/foo.cubin`` (or ``.ptx``). A source without an
        extension gets one appended.
    """
    return Path(source).with_suffix(f".{artifact_type.lower()}")


class ArtifactCache:
    """
    Existence-keyed cache of compiled artifacts.

    Example:
        >>> cache = ArtifactCache()
        >>> cached = cache.lookup("kernel.cu", "cubin")
        >>> if cached is None:
        ...     ...  # run the compiler
    """

    def __init__(self) -> None:
        """Initialize the cache counters."""
        self._hits = 0
        self._misses = 0

    def lookup(
        self,
        source: str | Path,
        artifact_type: str,
        *,
        force_rebuild: bool = False,
    ) -> Path | None:
        """
        Look up the artifact for ``source``.

        Args:
            source: Device source file.
            artifact_type: ``cubin`` or ``ptx``.
            force_rebuild: Treat every lookup as a miss.

        Returns:
            Path of the existing artifact, or None on a miss.
        """
        path = artifact_path(source, artifact_type)
        if not force_rebuild and path.exists():
            self._hits += 1
            logger.debug(f"Reusing existing {artifact_type} file {path}")
            return path

        self._misses += 1
        return None

    def invalidate(self, source: str | Path, artifact_type: str) -> bool:
        """
        Delete the artifact for ``source`` so the next lookup misses.

        Returns:
            True if a file was removed.
        """
        path = artifact_path(source, artifact_type)
        if not path.exists():
            return False
        path.unlink()
        logger.debug(f"Removed cached {artifact_type} file {path}")
        return True

    @property
    def hits(self) -> int:
        """Number of lookups that found an artifact."""
        return self._hits

    @property
    def misses(self) -> int:
        """Number of lookups that required a compile."""
        return self._misses

    def get_stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache statistics.
        """
        return {
            "hits": self._hits,
            "misses": self._misses,
        }

    def __repr__(self) -> str:
        """String representation."""
        return f"ArtifactCache(hits={self._hits}, misses={self._misses})"
