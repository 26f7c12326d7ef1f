"""Read-only analyzers for scene complexity, animations and UV usage."""

from glb_compress.analyzers.animations import AnimationStats, analyze_animations
from glb_compress.analyzers.complexity import (
    ComplexityReport,
    analyze_mesh_complexity,
    find_instancing_candidates,
)
from glb_compress.analyzers.uv_maps import analyze_unused_uv_maps, used_texcoord_sets

__all__ = [
    "AnimationStats",
    "ComplexityReport",
    "analyze_animations",
    "analyze_mesh_complexity",
    "analyze_unused_uv_maps",
    "find_instancing_candidates",
    "used_texcoord_sets",
]
