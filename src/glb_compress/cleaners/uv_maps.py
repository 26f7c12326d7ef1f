"""UV set cleanup."""

from glb_compress.analyzers.uv_maps import used_texcoord_sets
from glb_compress.scene.model import Document


def remove_unused_uvs(doc: Document) -> int:
    """Strip ``TEXCOORD_N`` attributes no material samples; returns the count removed."""
    used = used_texcoord_sets(doc)
    removed = 0

    for _, primitive in doc.iter_primitives():
        for semantic in primitive.list_semantics():
            uv_set = semantic.texcoord_set
            if uv_set is not None and uv_set not in used:
                primitive.set_attribute(semantic, None)
                removed += 1

    return removed
