"""
glb-compress
============
Cleans up and compresses GLB/glTF files for web delivery.

Pipeline:
- Strips stale mesh compression extension declarations
- Shares identical accessors and prunes unreachable data
- Removes unused UV sets
- Static meshes only: welds and merges coincident vertices, drops
  degenerate triangles and reorders vertices for fetch locality
- Resamples animation keyframes and removes tracks that never move in
  any animation (global consensus)
- Normalizes skin weights on skinned documents
- Downscales textures and re-encodes them as WebP
- Final compression with native gltfpack, falling back to the WASM
  build and finally to in-process quantization

Usage:
    CLI:
        glb-compress model.glb
        glb-compress "models/*.glb" -o dist -p aggressive -j 4

    Python:
        from glb_compress import CompressOptions, compress
        result = compress(data, CompressOptions(preset="balanced"))
"""

from importlib.metadata import PackageNotFoundError, version

from glb_compress.errors import (
    CompressedGeometryError,
    CompressError,
    CompressionFailedError,
    InvalidGlbError,
)
from glb_compress.pipeline import (
    CompressOptions,
    CompressResult,
    compress,
    has_gltfpack,
    init,
)

try:
    __version__ = version("glb-compress")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = [
    "CompressError",
    "CompressedGeometryError",
    "CompressOptions",
    "CompressResult",
    "CompressionFailedError",
    "InvalidGlbError",
    "compress",
    "has_gltfpack",
    "init",
]
