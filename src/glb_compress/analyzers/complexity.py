"""Scene complexity analysis for detecting overly heavy meshes."""

from __future__ import annotations

from dataclasses import dataclass, field

from glb_compress.scene.model import Document, Semantic
from glb_compress.utils.constants import (
    INSTANCE_MIN,
    MESH_WARN_THRESHOLD,
    TOTAL_WARN_THRESHOLD,
)

# Bloated meshes listed individually before summarizing the rest
MAX_LISTED_MESHES = 5


@dataclass
class ComplexityReport:
    meshes: int = 0
    total_verts: int = 0
    skins: int = 0
    animations: int = 0
    # (mesh name, vertex count)
    bloated: list[tuple[str, int]] = field(default_factory=list)
    warnings: list[dict[str, object]] = field(default_factory=list)

    def summary_lines(self, warn_threshold: int = MESH_WARN_THRESHOLD) -> list[str]:
        """Progress lines describing the scene, warnings prefixed with ``!``."""
        lines = [
            f"Scene: {self.meshes} meshes, {self.total_verts:,} verts, "
            f"{self.skins} skins, {self.animations} animations"
        ]
        if self.bloated:
            lines.append(f"Bloated meshes (>{warn_threshold} verts):")
            for name, verts in self.bloated[:MAX_LISTED_MESHES]:
                lines.append(f"  {name}: {verts:,} verts")
            if len(self.bloated) > MAX_LISTED_MESHES:
                lines.append(f"  ... and {len(self.bloated) - MAX_LISTED_MESHES} more")
        for warn in self.warnings:
            if warn["object"] == "SCENE":
                lines.append(f"! {warn['detail']}")
        return lines


def analyze_mesh_complexity(
    doc: Document,
    warn_threshold: int = MESH_WARN_THRESHOLD,
    total_warn_threshold: int = TOTAL_WARN_THRESHOLD,
) -> ComplexityReport:
    """
    Count vertices per mesh and flag meshes or scenes too heavy for the web.

    Read-only. Vertex counts are summed over each mesh's primitives.
    Warnings use severity levels:
    - WARNING: mesh above ``warn_threshold``
    - WARNING: scene total above ``total_warn_threshold``
    """
    report = ComplexityReport(
        meshes=len(doc.meshes),
        skins=len(doc.skins),
        animations=len(doc.animations),
    )

    for mesh in doc.list_meshes():
        verts = 0
        for primitive in mesh.primitives:
            position = primitive.get_attribute(Semantic.POSITION)
            if position is not None:
                verts += position.get_count()
        report.total_verts += verts

        if verts > warn_threshold:
            name = mesh.name or "unnamed"
            report.bloated.append((name, verts))
            report.warnings.append({
                "severity": "WARNING",
                "object": name,
                "issue": "BLOATED_MESH",
                "detail": f"{verts:,} verts (limit: {warn_threshold:,})",
                "suggestion": "Decimate or simplify",
            })

    if report.total_verts > total_warn_threshold:
        report.warnings.append({
            "severity": "WARNING",
            "object": "SCENE",
            "issue": "HIGH_TOTAL_VERTS",
            "detail": (
                f"High total vertex count ({report.total_verts:,} > "
                f"{total_warn_threshold:,})"
            ),
            "suggestion": "Review all meshes for optimization opportunities",
        })

    return report


def find_instancing_candidates(
    doc: Document, min_count: int = INSTANCE_MIN
) -> list[tuple[str, int]]:
    """
    List meshes placed by at least ``min_count`` unskinned nodes.

    Returns ``(mesh name, node count)`` pairs in document order. These are
    the meshes gltfpack turns into ``EXT_mesh_gpu_instancing`` with ``-mi``.
    """
    counts: dict[int, int] = {}
    for node in doc.nodes:
        if node.mesh is not None and node.skin is None:
            counts[id(node.mesh)] = counts.get(id(node.mesh), 0) + 1
    return [
        (mesh.name or "unnamed", counts[id(mesh)])
        for mesh in doc.meshes
        if counts.get(id(mesh), 0) >= min_count
    ]
