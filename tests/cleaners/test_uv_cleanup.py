"""Tests for unused UV set removal."""

from __future__ import annotations

import numpy as np

from glb_compress.scene import Accessor, Document, Semantic


def _uvs() -> Accessor:
    return Accessor(np.zeros((3, 2), dtype=np.float32), "VEC2")


def _uv_doc(build_mesh, materials: list[dict] | None, textures: list[dict] | None = None) -> Document:
    doc = Document()
    build_mesh(
        doc,
        [[0, 0, 0], [1, 0, 0], [0, 1, 0]],
        [0, 1, 2],
        name="panel",
        TEXCOORD_0=_uvs(),
        TEXCOORD_1=_uvs(),
    )
    if materials is not None:
        doc.json["materials"] = materials
    if textures is not None:
        doc.json["textures"] = textures
    return doc


class TestRemoveUnusedUvs:
    """Tests for remove_unused_uvs function."""

    def test_keeps_only_sampled_sets(self, build_mesh) -> None:
        """A lightmap on set 1 keeps set 1 and drops set 0."""
        from glb_compress.cleaners import remove_unused_uvs

        doc = _uv_doc(build_mesh, [{"occlusionTexture": {"index": 0, "texCoord": 1}}])

        removed = remove_unused_uvs(doc)

        primitive = doc.meshes[0].primitives[0]
        assert removed == 1
        assert primitive.get_attribute(Semantic.TEXCOORD_0) is None
        assert primitive.get_attribute(Semantic.TEXCOORD_1) is not None

    def test_strips_every_set_without_textures(self, build_mesh) -> None:
        """Untextured documents need no UVs at all."""
        from glb_compress.cleaners import remove_unused_uvs

        doc = _uv_doc(build_mesh, [{"name": "flat"}])

        assert remove_unused_uvs(doc) == 2

    def test_textures_without_explicit_set_keep_set_zero(self, build_mesh) -> None:
        """Textures with no material reference fall back to set 0."""
        from glb_compress.cleaners import remove_unused_uvs

        doc = _uv_doc(build_mesh, None, textures=[{"source": 0}])

        assert remove_unused_uvs(doc) == 1
        assert doc.meshes[0].primitives[0].get_attribute(Semantic.TEXCOORD_0) is not None

    def test_texture_transform_overrides_set(self, build_mesh) -> None:
        """KHR_texture_transform's texCoord wins over the base value."""
        from glb_compress.cleaners import remove_unused_uvs

        doc = _uv_doc(
            build_mesh,
            [
                {
                    "pbrMetallicRoughness": {
                        "baseColorTexture": {
                            "index": 0,
                            "extensions": {"KHR_texture_transform": {"texCoord": 1}},
                        }
                    }
                }
            ],
        )

        remove_unused_uvs(doc)

        primitive = doc.meshes[0].primitives[0]
        assert primitive.list_semantics() == [Semantic.POSITION, Semantic.TEXCOORD_1]
