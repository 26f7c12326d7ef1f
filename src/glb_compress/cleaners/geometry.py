"""Vertex merge, degenerate face removal and decimation planning."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from glb_compress.scene.model import TRIANGLES, Document, Semantic
from glb_compress.utils.constants import (
    DECIMATE_RATIO_BOUNDS,
    DECIMATE_TARGET_RATIO,
    DEGENERATE_MIN_AREA,
    MERGE_TOLERANCE,
    MESH_WARN_THRESHOLD,
)


def first_seen_remap(keys: np.ndarray) -> tuple[np.ndarray, np.ndarray] | None:
    """
    Group rows of ``keys`` and map every row to the first row with its key.

    Returns ``(remap, new_to_old)`` with survivors in first-seen order, or
    None when all keys are distinct.
    """
    _, first, inverse = np.unique(keys, axis=0, return_index=True, return_inverse=True)
    if len(first) == len(keys):
        return None
    # np.unique sorts keys; restore first-seen order of the survivors
    order = np.argsort(first, kind="stable")
    rank = np.empty_like(order)
    rank[order] = np.arange(len(order))
    return rank[inverse.reshape(-1)], first[order]


def merge_by_distance(doc: Document, tolerance: float = MERGE_TOLERANCE) -> int:
    """
    Collapse vertices whose positions fall in the same tolerance cell.

    Positions are quantized per axis to ``round(coord / tolerance)``; every
    vertex is remapped to the first vertex seen with the same key and all
    vertex attributes are compacted in first-seen order. Destroys per-vertex
    skin data, so callers must not run it on skinned documents.

    Returns the number of vertices removed across all primitives.
    """
    assert tolerance > 0, "tolerance must be positive"
    scale = 1.0 / tolerance
    usage = doc.accessor_usage()
    removed = 0

    for _, primitive in doc.iter_primitives():
        position = primitive.get_attribute(Semantic.POSITION)
        if position is None or primitive.get_indices() is None:
            continue

        vertex_count = position.get_count()
        if vertex_count == 0:
            continue
        keys = np.floor(position.get_float_elements() * scale + 0.5).astype(np.int64)
        merged = first_seen_remap(keys)
        if merged is None:
            continue
        remap, new_to_old = merged

        doc.detach_shared(primitive, usage)
        primitive.rebuild(remap, new_to_old)
        removed += vertex_count - len(new_to_old)

    return removed


def remove_degenerate_faces(doc: Document, min_area: float = DEGENERATE_MIN_AREA) -> int:
    """
    Drop triangles with repeated indices or an area below ``min_area``.

    Only indexed triangle-list primitives are touched. Vertex buffers are
    left as they are; orphaned vertices are removed by :func:`prune`.

    Returns the number of triangles removed.
    """
    usage = doc.accessor_usage()
    removed = 0

    for _, primitive in doc.iter_primitives():
        if primitive.mode != TRIANGLES:
            continue
        indices = primitive.get_indices()
        position = primitive.get_attribute(Semantic.POSITION)
        if indices is None or position is None:
            continue

        flat = indices.get_array()
        assert flat.size % 3 == 0, "triangle index count is not a multiple of 3"
        triangles = flat.reshape(-1, 3)
        if len(triangles) == 0:
            continue

        i0, i1, i2 = triangles[:, 0], triangles[:, 1], triangles[:, 2]
        points = position.get_float_elements()
        p0, p1, p2 = points[i0], points[i1], points[i2]
        area = 0.5 * np.linalg.norm(np.cross(p1 - p0, p2 - p0), axis=1)

        keep = (i0 != i1) & (i1 != i2) & (i0 != i2) & (area >= min_area)
        dropped = int(len(triangles) - np.count_nonzero(keep))
        if dropped == 0:
            continue

        doc.detach_shared(primitive, usage)
        primitive.indices.set_array(triangles[keep].reshape(-1).astype(np.uint32))
        removed += dropped

    return removed


@dataclass
class DecimationPlan:
    """Simplification ratio derived from the worst bloated primitive."""

    threshold: int
    ratio: float
    # (mesh name, vertex count, target vertex count)
    bloated: list[tuple[str, int, int]] = field(default_factory=list)


def plan_bloat_decimation(
    doc: Document,
    threshold: int = MESH_WARN_THRESHOLD,
    target_ratio: float = DECIMATE_TARGET_RATIO,
) -> DecimationPlan | None:
    """
    Work out how hard to simplify when primitives exceed ``threshold`` vertices.

    The ratio is ``target_ratio * threshold / worst`` clamped to
    ``DECIMATE_RATIO_BOUNDS`` and applied with
    :func:`glb_compress.cleaners.simplify.simplify`. Returns None when nothing
    is bloated.
    """
    bloated: list[tuple[str, int, int]] = []
    target_verts = int(threshold * target_ratio)
    for mesh, primitive in doc.iter_primitives():
        position = primitive.get_attribute(Semantic.POSITION)
        if position is None:
            continue
        count = position.get_count()
        if count > threshold:
            bloated.append((mesh.name or "unnamed", count, target_verts))

    if not bloated:
        return None

    worst = max(verts for _, verts, _ in bloated)
    low, high = DECIMATE_RATIO_BOUNDS
    ratio = max(low, min(target_ratio * threshold / worst, high))
    return DecimationPlan(threshold=threshold, ratio=ratio, bloated=bloated)
