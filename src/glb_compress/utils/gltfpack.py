"""Wrapper for the native gltfpack mesh/texture compression tool."""

from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import TypeAlias

from glb_compress.utils.constants import (
    ENV_GLTFPACK_PATH,
    GLTFPACK_TIMEOUT,
    PRESETS,
    CompressPreset,
)

# Result type alias for clarity
GltfpackResult: TypeAlias = tuple[bool, Path, str]

# Flags that already select a compression mode
_COMPRESS_FLAGS = ("-c", "-cc", "-cz")


def find_gltfpack(explicit: str | Path | None = None) -> str | None:
    """
    Locate the gltfpack executable.

    Checks ``explicit``, then the ``GLB_COMPRESS_GLTFPACK`` environment
    variable, then PATH.
    """
    for candidate in (explicit, os.environ.get(ENV_GLTFPACK_PATH)):
        if candidate:
            return shutil.which(str(candidate))
    return shutil.which("gltfpack")


def gltfpack_version(gltfpack: str, timeout: float = 10.0) -> str | None:
    """Return ``gltfpack -v`` output, or None if the binary does not run."""
    try:
        result = subprocess.run(
            [gltfpack, "-v"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (subprocess.SubprocessError, OSError):
        return None
    output = (result.stdout.strip() or result.stderr.strip()).splitlines()
    if result.returncode != 0 or not output:
        return None
    return output[0]


def build_gltfpack_args(preset: CompressPreset, skinned: bool) -> list[str]:
    """
    Build flags for the native binary from a preset.

    ``-cc`` is added unless the preset already picks a compression mode;
    ``-tc`` is always added. Static documents also get ``-mi`` so meshes
    shared by several nodes become GPU instances. Simplification requested
    by the caller has already been applied in-process, so a preset ``-si``
    compounds with it.
    """
    config = PRESETS[preset]
    flags = list(config["skinned"] if skinned else config["static"])
    has_compress_flag = any(f in _COMPRESS_FLAGS for f in flags)
    args = [*([] if has_compress_flag else ["-cc"]), "-tc", *flags]
    if not skinned:
        args.append("-mi")
    return args


def build_fallback_args(skinned: bool) -> list[str]:
    """
    Build flags for the WASM fallback.

    Skinned documents keep full precision (``-noq``) so weights are not
    distorted; static documents are quantized and instanced.
    """
    return ["-cc", "-noq"] if skinned else ["-cc", "-mi"]


def build_decode_args() -> list[str]:
    """
    Flags that make gltfpack rewrite a compressed GLB uncompressed.

    Used to unpack ``EXT_meshopt_compression`` input before the cleanup
    transforms run; names, materials, extras and constant tracks are kept.
    """
    return ["-noq", "-kn", "-km", "-ke", "-ac"]


def run_gltfpack(
    gltfpack: str,
    input_path: str | Path,
    output_path: str | Path,
    args: list[str],
    *,
    timeout: float = GLTFPACK_TIMEOUT,
) -> GltfpackResult:
    """
    Run native gltfpack with a hard timeout.

    The child is killed when ``timeout`` expires. Never raises; failures
    are reported in the message.

    Returns:
        Tuple of (success, output_path, message)
    """
    input_path = Path(input_path)
    output_path = Path(output_path)
    if not input_path.is_file():
        return False, output_path, f"Input file not found or is not a file: {input_path}"

    cmd = [gltfpack, "-i", str(input_path), "-o", str(output_path), *args]
    try:
        result = subprocess.run(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return False, output_path, f"gltfpack timed out after {timeout:g}s"
    except subprocess.SubprocessError as e:
        return False, output_path, f"gltfpack subprocess error: {e}"
    except OSError as e:
        return False, output_path, f"gltfpack OS error (cmd={cmd[0]}): {e}"

    if result.returncode != 0:
        error_msg = (result.stderr or "").strip() or "Unknown error"
        return False, output_path, f"gltfpack exited with code {result.returncode}: {error_msg}"
    if not output_path.is_file():
        return False, output_path, "gltfpack completed but output file not found"
    return True, output_path, "Success"
