"""Triangle-count reduction with MeshLab's quadric edge collapse."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
import pymeshlab

from glb_compress.scene.model import TRIANGLES, Accessor, Document, Semantic


@dataclass
class SimplifyReport:
    primitives: int = 0
    triangles_before: int = 0
    triangles_after: int = 0
    vertices_before: int = 0
    vertices_after: int = 0


def _decimate(
    points: np.ndarray, faces: np.ndarray, target: int
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Collapse edges until ``faces`` is down to about ``target`` triangles.

    Returns the new positions, the new faces and, for every output vertex,
    the input vertex it came from. The origin travels through MeshLab as the
    per-vertex scalar so other attributes can be gathered afterwards.
    """
    ms = pymeshlab.MeshSet()
    ms.add_mesh(
        pymeshlab.Mesh(
            vertex_matrix=np.ascontiguousarray(points, dtype=np.float64),
            face_matrix=np.ascontiguousarray(faces, dtype=np.int32),
            v_scalar_array=np.arange(len(points), dtype=np.float64),
        )
    )
    ms.meshing_decimation_quadric_edge_collapse(
        targetfacenum=target,
        preserveboundary=True,
        preservenormal=True,
        preservetopology=True,
        optimalplacement=False,
        autoclean=True,
    )
    mesh = ms.current_mesh()
    origin = np.rint(mesh.vertex_scalar_array()).astype(np.int64)
    origin = np.clip(origin, 0, len(points) - 1)
    return mesh.vertex_matrix(), mesh.face_matrix(), origin


def simplify(doc: Document, ratio: float) -> SimplifyReport:
    """
    Reduce every indexed triangle primitive to ``ratio`` of its triangles.

    Positions come from the simplified mesh; every other vertex attribute
    (normals, UVs, colors, joints, weights, morph targets) is copied from
    the input vertex each output vertex descends from. Primitives that are
    not indexed triangle lists, or already too small to reduce, are left
    alone.
    """
    assert 0.0 < ratio < 1.0, "ratio must be strictly between 0 and 1"
    report = SimplifyReport()
    usage = doc.accessor_usage()

    for _, primitive in doc.iter_primitives():
        if primitive.mode != TRIANGLES:
            continue
        indices = primitive.get_indices()
        position = primitive.get_attribute(Semantic.POSITION)
        if indices is None or position is None:
            continue
        faces = indices.get_array().reshape(-1, 3)
        target = max(1, int(len(faces) * ratio))
        if target >= len(faces):
            continue

        points, new_faces, origin = _decimate(position.get_float_elements(), faces, target)
        if len(new_faces) >= len(faces):
            continue

        vertex_count = position.get_count()
        doc.detach_shared(primitive, usage)
        # One accessor may fill several slots; gather it once
        seen: set[int] = set()
        for accessor in primitive.vertex_accessors():
            if id(accessor) in seen:
                continue
            seen.add(id(accessor))
            accessor.set_array(accessor.get_elements()[origin])
        primitive.set_attribute(
            Semantic.POSITION, Accessor(points.astype(np.float32), "VEC3", name=position.name)
        )
        primitive.indices.set_array(new_faces.reshape(-1).astype(np.uint32))

        report.primitives += 1
        report.triangles_before += len(faces)
        report.triangles_after += len(new_faces)
        report.vertices_before += vertex_count
        report.vertices_after += len(points)

    return report
