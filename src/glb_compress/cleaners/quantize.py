"""Vertex attribute quantization for static meshes."""

import numpy as np

from glb_compress.scene.model import Accessor, Document, Semantic

QUANTIZATION_EXTENSION = "KHR_mesh_quantization"

_SIGNED_UNIT = (Semantic.NORMAL, Semantic.TANGENT)
_UNSIGNED_UNIT = (
    Semantic.TEXCOORD_0,
    Semantic.TEXCOORD_1,
    Semantic.TEXCOORD_2,
    Semantic.TEXCOORD_3,
    Semantic.COLOR_0,
    Semantic.COLOR_1,
)


def _quantize_signed(accessor: Accessor) -> Accessor:
    values = np.clip(accessor.get_float_elements(), -1.0, 1.0)
    packed = np.floor(values * 127 + 0.5).astype(np.int8)
    return Accessor(packed, accessor.type, normalized=True, name=accessor.name)


def _quantize_unsigned(accessor: Accessor, dtype: type) -> Accessor:
    top = np.iinfo(dtype).max
    packed = np.floor(accessor.get_float_elements() * top + 0.5).astype(dtype)
    return Accessor(packed, accessor.type, normalized=True, name=accessor.name)


def quantize(doc: Document) -> int:
    """
    Store unit-range float attributes as normalized integers.

    Normals and tangents become int8; UVs inside [0, 1] become uint16;
    vertex colors inside [0, 1] become uint8. Positions, skin data and
    morph targets keep full precision. Must not run on skinned documents.

    Returns the number of attributes quantized.
    """
    converted: dict[tuple[int, Semantic], Accessor] = {}
    count = 0

    for _, primitive in doc.iter_primitives():
        for semantic, accessor in list(primitive.attributes.items()):
            if accessor.get_array().dtype != np.float32:
                continue
            replacement = converted.get((id(accessor), semantic))
            if replacement is None:
                values = accessor.get_array()
                in_unit_range = bool(values.size) and values.min() >= 0.0 and values.max() <= 1.0
                if semantic in _SIGNED_UNIT:
                    replacement = _quantize_signed(accessor)
                elif semantic in _UNSIGNED_UNIT and in_unit_range:
                    dtype = np.uint8 if semantic.value.startswith("COLOR_") else np.uint16
                    replacement = _quantize_unsigned(accessor, dtype)
                else:
                    continue
                converted[(id(accessor), semantic)] = replacement
            primitive.set_attribute(semantic, replacement)
            count += 1

    if count:
        doc.declare_extension(QUANTIZATION_EXTENSION, required=True)
    return count
