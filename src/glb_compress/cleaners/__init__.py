"""Cleaners that rewrite geometry, skins, animations and textures."""

from glb_compress.cleaners.animation import (
    StaticTrackReport,
    remove_static_tracks_with_bake,
)
from glb_compress.cleaners.geometry import (
    DecimationPlan,
    merge_by_distance,
    plan_bloat_decimation,
    remove_degenerate_faces,
)
from glb_compress.cleaners.quantize import quantize
from glb_compress.cleaners.reorder import reorder
from glb_compress.cleaners.resample import resample
from glb_compress.cleaners.simplify import SimplifyReport, simplify
from glb_compress.cleaners.structure import (
    PruneReport,
    dedup,
    prune,
    strip_compression_extensions,
    weld,
)
from glb_compress.cleaners.textures import TextureReport, compress_textures
from glb_compress.cleaners.uv_maps import remove_unused_uvs
from glb_compress.cleaners.weights import normalize_weights

__all__ = [
    "DecimationPlan",
    "PruneReport",
    "SimplifyReport",
    "StaticTrackReport",
    "TextureReport",
    "compress_textures",
    "dedup",
    "merge_by_distance",
    "normalize_weights",
    "plan_bloat_decimation",
    "prune",
    "quantize",
    "remove_degenerate_faces",
    "remove_static_tracks_with_bake",
    "remove_unused_uvs",
    "reorder",
    "resample",
    "simplify",
    "strip_compression_extensions",
    "weld",
]
