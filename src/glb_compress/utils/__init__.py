"""Input validation, naming and temp-dir helpers."""

from __future__ import annotations

import re
import shutil
import struct
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from glb_compress.errors import InvalidGlbError
from glb_compress.utils.constants import GLB_MAGIC
from glb_compress.utils.logging import format_bytes

__all__ = [
    "format_bytes",
    "parse_simplify_ratio",
    "sanitize_filename",
    "validate_glb_magic",
    "with_temp_dir",
]

MAX_FILENAME_LENGTH = 200
DEFAULT_FILENAME = "model.glb"
TEMP_DIR_PREFIX = "glb-compress-"


def validate_glb_magic(data: bytes) -> None:
    """Raise InvalidGlbError unless data starts with the GLB magic number."""
    if len(data) < 4:
        raise InvalidGlbError("File too small to be a valid GLB")
    (magic,) = struct.unpack_from("<I", data, 0)
    if magic != GLB_MAGIC:
        raise InvalidGlbError(
            f"Invalid GLB file: expected magic 0x{GLB_MAGIC:x}, got 0x{magic:x}"
        )


def sanitize_filename(name: str) -> str:
    """
    Reduce an untrusted name to a safe base filename.

    Strips directories, replaces reserved and control characters with
    underscores, trims leading/trailing dots and whitespace, and caps the
    length. Falls back to ``model.glb``.
    """
    base = re.split(r"[\\/]", name)[-1]
    clean = re.sub(r'[<>:"|?*\x00-\x1f]', "_", base)
    clean = re.sub(r"^[.\s]+|[.\s]+$", "", clean)[:MAX_FILENAME_LENGTH]
    return clean or DEFAULT_FILENAME


def parse_simplify_ratio(raw: str | float | None) -> float | None:
    """Parse a simplification ratio; None unless strictly between 0 and 1."""
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if not 0.0 < value < 1.0:
        return None
    return value


@contextmanager
def with_temp_dir() -> Iterator[Path]:
    """Yield a fresh temporary directory, removed on exit even on error."""
    path = Path(tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX))
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)
