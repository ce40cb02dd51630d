"""Atomic file write utilities for cached assets and reports.

**Responsibilities**
--------------------
- Write bytes to disk atomically using temporary file + fsync + rename so a
  crash never leaves a truncated image or report behind
- Buffer streamed downloads while enforcing a size ceiling

**Safety**
----------
- Temporary files live in the destination directory so ``os.replace`` stays on
  one filesystem
- Temporary files are removed on any failure
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterator, Optional, Union

__all__ = ["SizeLimitExceeded", "atomic_write_bytes", "atomic_write_json", "read_bounded"]

logger = logging.getLogger(__name__)


class SizeLimitExceeded(Exception):
    """Raised when a stream grows beyond the permitted number of bytes.

    Attributes:
        limit: Maximum bytes allowed.
        observed: Bytes seen when the limit was crossed (or the declared
            Content-Length).
    """

    def __init__(self, limit: int, observed: int) -> None:
        self.limit = limit
        self.observed = observed
        super().__init__(f"Size limit exceeded: {observed} bytes > {limit} bytes")


def read_bounded(
    byte_iter: Iterator[bytes], *, limit: int, declared_len: Optional[int] = None
) -> bytes:
    """Collect ``byte_iter`` into memory, refusing more than ``limit`` bytes.

    Raises:
        SizeLimitExceeded: If ``declared_len`` or the running total exceeds ``limit``
    """
    if declared_len is not None and declared_len > limit:
        raise SizeLimitExceeded(limit, declared_len)

    chunks = []
    total = 0
    for chunk in byte_iter:
        if not chunk:
            continue
        total += len(chunk)
        if total > limit:
            raise SizeLimitExceeded(limit, total)
        chunks.append(chunk)
    return b"".join(chunks)


def atomic_write_bytes(dest_path: Union[str, Path], data: bytes) -> int:
    """Write ``data`` to ``dest_path`` atomically.

    Args:
        dest_path: Destination file. Parent directories are created.
        data: Complete file contents.

    Returns:
        Number of bytes written.

    Raises:
        OSError: If file I/O fails (permission denied, disk full, etc.).
    """
    dest_path = str(dest_path)
    dest_dir = os.path.dirname(dest_path) or "."
    os.makedirs(dest_dir, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=dest_dir, prefix=".part-", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, dest_path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise

    logger.debug(f"Wrote {len(data)} bytes to {dest_path}")
    return len(data)


def atomic_write_json(dest_path: Union[str, Path], payload: Any) -> int:
    """Serialise ``payload`` as indented JSON and write it atomically."""
    return atomic_write_bytes(dest_path, json.dumps(payload, indent=2, default=str).encode("utf-8"))

