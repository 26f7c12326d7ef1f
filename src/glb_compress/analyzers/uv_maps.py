"""Detection of UV sets referenced by materials."""

from typing import Any

from glb_compress.scene.model import Document, Semantic

# Core material texture slots
_CORE_TEXTURES = ("normalTexture", "occlusionTexture", "emissiveTexture")
_PBR_TEXTURES = ("baseColorTexture", "metallicRoughnessTexture")


def _texcoord(info: dict[str, Any]) -> int:
    transform = info.get("extensions", {}).get("KHR_texture_transform", {})
    if "texCoord" in transform:
        return int(transform["texCoord"])
    return int(info.get("texCoord", 0))


def _extension_texture_infos(value: Any) -> list[dict[str, Any]]:
    """Texture infos nested anywhere inside material extensions."""
    found: list[dict[str, Any]] = []
    if isinstance(value, dict):
        if isinstance(value.get("index"), int):
            found.append(value)
        for child in value.values():
            found.extend(_extension_texture_infos(child))
    elif isinstance(value, list):
        for child in value:
            found.extend(_extension_texture_infos(child))
    return found


def used_texcoord_sets(doc: Document) -> set[int]:
    """
    Collect ``TEXCOORD_N`` sets referenced by any material texture.

    Falls back to set 0 when the document has textures but no material
    references a UV set explicitly.
    """
    used: set[int] = set()
    for material in doc.list_materials():
        infos = [material[k] for k in _CORE_TEXTURES if k in material]
        pbr = material.get("pbrMetallicRoughness", {})
        infos.extend(pbr[k] for k in _PBR_TEXTURES if k in pbr)
        infos.extend(_extension_texture_infos(material.get("extensions", {})))
        used.update(_texcoord(info) for info in infos)

    if doc.list_textures() and not used:
        used.add(0)
    return used


def analyze_unused_uv_maps(doc: Document) -> list[dict[str, object]]:
    """
    Detect UV sets that no material samples.

    Unused TEXCOORD attributes bloat the output file.
    Returns one entry per mesh with unused UV sets.
    """
    used = used_texcoord_sets(doc)
    warnings: list[dict[str, object]] = []

    for mesh in doc.list_meshes():
        present: set[str] = set()
        for primitive in mesh.primitives:
            present.update(
                s.value for s in primitive.list_semantics() if s.texcoord_set is not None
            )
        unused = sorted(name for name in present if Semantic(name).texcoord_set not in used)
        if unused:
            warnings.append({
                "mesh": mesh.name or "unnamed",
                "unused_uvs": unused,
                "total_uvs": len(present),
            })

    return warnings
