"""Vertex fetch reordering."""

import numpy as np

from glb_compress.scene.model import Document


def reorder(doc: Document) -> int:
    """
    Renumber vertices in the order the index buffer first references them.

    Improves vertex fetch locality on the GPU. Unreferenced vertices keep
    their relative order at the end. Returns the number of primitives changed.
    """
    usage = doc.accessor_usage()
    changed = 0

    for _, primitive in doc.iter_primitives():
        indices = primitive.get_indices()
        vertex_count = primitive.get_vertex_count()
        if indices is None or vertex_count == 0 or indices.get_count() == 0:
            continue

        values, first = np.unique(indices.get_array(), return_index=True)
        fetch_order = values[np.argsort(first, kind="stable")].astype(np.int64)
        unused = np.setdiff1d(np.arange(vertex_count), fetch_order, assume_unique=True)
        new_to_old = np.concatenate([fetch_order, unused])
        if np.array_equal(new_to_old, np.arange(vertex_count)):
            continue

        remap = np.empty(vertex_count, dtype=np.uint32)
        remap[new_to_old] = np.arange(vertex_count, dtype=np.uint32)
        doc.detach_shared(primitive, usage)
        primitive.rebuild(remap, new_to_old)
        changed += 1

    return changed
