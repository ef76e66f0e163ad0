"""
File storage for import sources.

``FileStore`` is the seam the importer downloads from and renames processed
files in.  ``LocalFileStore`` maps each bucket onto a directory under a root
and is what tests and local runs use.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol, runtime_checkable

from program_kernel.exceptions import SourceFileError
from program_kernel.logging_config import get_logger

logger = get_logger("ingestion.storage")


@runtime_checkable
class FileStore(Protocol):
    """Bucketed object storage."""

    def download(self, bucket: str, path: str) -> bytes:
        """Return file content. Raises SourceFileError if unavailable."""
        ...

    def move(self, bucket: str, src: str, dst: str) -> None:
        """Rename a file within a bucket. Raises SourceFileError on failure."""
        ...


class LocalFileStore:
    """Buckets are directories under ``root``."""

    def __init__(self, root: Path | str):
        self._root = Path(root).resolve()

    def _resolve(self, bucket: str, path: str) -> Path:
        bucket_dir = (self._root / bucket).resolve()
        target = (bucket_dir / path).resolve()
        if bucket_dir not in target.parents:
            raise SourceFileError(path, f"path escapes bucket {bucket!r}")
        return target

    def download(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        try:
            return target.read_bytes()
        except FileNotFoundError:
            raise SourceFileError(path, "file not found") from None
        except OSError as exc:
            raise SourceFileError(path, str(exc)) from exc

    def move(self, bucket: str, src: str, dst: str) -> None:
        source = self._resolve(bucket, src)
        target = self._resolve(bucket, dst)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(source, target)
        except OSError as exc:
            raise SourceFileError(src, f"move to {dst} failed: {exc}") from exc
        logger.debug("file_moved", extra={"bucket": bucket, "src": src, "dst": dst})
