"""Tests for document-wide dedup, prune and weld stages."""

from __future__ import annotations

import numpy as np

from glb_compress.scene import Accessor, Document, Semantic

TRIANGLE = [[0, 0, 0], [1, 0, 0], [0, 1, 0]]


class TestStripCompressionExtensions:
    """Tests for strip_compression_extensions function."""

    def test_removes_declared_compression_extensions(self) -> None:
        """Draco and meshopt declarations are dropped, others stay."""
        from glb_compress.cleaners import strip_compression_extensions

        doc = Document()
        doc.declare_extension("KHR_draco_mesh_compression", required=True)
        doc.declare_extension("EXT_meshopt_compression")
        doc.declare_extension("KHR_materials_unlit")

        removed = strip_compression_extensions(doc)

        assert removed == ["KHR_draco_mesh_compression", "EXT_meshopt_compression"]
        assert doc.json["extensionsUsed"] == ["KHR_materials_unlit"]
        assert "extensionsRequired" not in doc.json

    def test_nothing_declared(self) -> None:
        """A document without compression extensions is untouched."""
        from glb_compress.cleaners import strip_compression_extensions

        assert strip_compression_extensions(Document()) == []


class TestDedup:
    """Tests for dedup function."""

    def test_shares_identical_accessors(self, build_mesh) -> None:
        """Two meshes with the same buffers end up sharing accessors."""
        from glb_compress.cleaners import dedup

        doc = Document()
        first = build_mesh(doc, TRIANGLE, [0, 1, 2], name="a")
        second = build_mesh(doc, TRIANGLE, [0, 1, 2], name="b")

        dropped = dedup(doc)

        assert dropped == 2
        assert second.get_attribute(Semantic.POSITION) is first.get_attribute(Semantic.POSITION)
        assert second.indices is first.indices

    def test_different_component_types_stay_separate(self, build_mesh) -> None:
        """Equal values with different component types are not merged."""
        from glb_compress.cleaners import dedup

        doc = Document()
        first = build_mesh(doc, TRIANGLE, [0, 1, 2], name="a")
        second = build_mesh(doc, TRIANGLE, None, name="b")
        second.indices = Accessor(first.indices.get_array().astype(np.uint16))

        assert dedup(doc) == 1
        assert second.indices is not first.indices

    def test_indices_not_shared_with_vertex_attributes(self, build_mesh) -> None:
        """An index buffer equal to a scalar attribute keeps its own accessor."""
        from glb_compress.cleaners import dedup

        doc = Document()
        primitive = build_mesh(doc, TRIANGLE, None, name="ids")
        primitive.indices = Accessor(np.array([0, 1, 2], dtype=np.uint16))
        primitive.custom_attributes["_ID"] = Accessor(np.array([0, 1, 2], dtype=np.uint16))

        assert dedup(doc) == 0
        assert primitive.indices is not primitive.custom_attributes["_ID"]

    def test_dedups_animation_inputs(self, make_track) -> None:
        """Samplers with identical time arrays share one input accessor."""
        from glb_compress.cleaners import dedup

        doc = Document()
        node = doc.create_node("spin")
        animation = doc.create_animation("clip")
        make_track(animation, node, "translation", [[0, 0, 0], [1, 0, 0]])
        make_track(animation, node, "scale", [[1, 1, 1], [2, 2, 2]])

        assert dedup(doc) == 1
        assert animation.samplers[0].input is animation.samplers[1].input


class TestPrune:
    """Tests for prune function."""

    def test_drops_orphan_channels_and_empty_animations(self) -> None:
        """Channels without a node take their sampler and animation with them."""
        from glb_compress.cleaners import prune

        doc = Document()
        animation = doc.create_animation("orphan")
        sampler = animation.create_sampler(
            Accessor(np.array([0, 1], dtype=np.float32)),
            Accessor(np.zeros(6, dtype=np.float32), "VEC3"),
        )
        animation.create_channel(sampler, None, "translation")

        report = prune(doc)

        assert (report.channels, report.samplers, report.animations) == (1, 1, 1)
        assert doc.animations == []

    def test_drops_empty_primitives_and_meshes(self, build_mesh) -> None:
        """A primitive with an empty index buffer is removed with its mesh."""
        from glb_compress.cleaners import prune

        doc = Document()
        build_mesh(doc, TRIANGLE, [], name="hollow")

        report = prune(doc)

        assert report.primitives == 1
        assert report.meshes == 1
        assert doc.meshes == []
        assert doc.nodes[0].mesh is None

    def test_compacts_unreferenced_vertices(self, build_mesh) -> None:
        """Vertices no index refers to are dropped."""
        from glb_compress.cleaners import prune

        doc = Document()
        primitive = build_mesh(doc, [*TRIANGLE, [1, 1, 0]], [0, 1, 3], name="sparse")

        report = prune(doc)

        assert report.vertices == 1
        assert report.total == 1
        assert primitive.indices.get_array().tolist() == [0, 1, 2]
        positions = primitive.get_attribute(Semantic.POSITION).get_elements()
        assert positions.tolist() == [[0, 0, 0], [1, 0, 0], [1, 1, 0]]

    def test_clean_document(self, triangle_doc: Document) -> None:
        """Nothing to prune reports zero."""
        from glb_compress.cleaners import prune

        assert prune(triangle_doc).total == 0


class TestWeld:
    """Tests for weld function."""

    def test_merges_bitwise_identical_vertices(self, build_mesh) -> None:
        """Exact duplicates collapse onto their first occurrence."""
        from glb_compress.cleaners import weld

        doc = Document()
        primitive = build_mesh(doc, [*TRIANGLE, [1, 0, 0]], [0, 1, 2, 3, 2, 0])

        removed = weld(doc)

        assert removed == 1
        assert primitive.get_vertex_count() == 3
        assert primitive.indices.get_array().tolist() == [0, 1, 2, 1, 2, 0]

    def test_keeps_vertices_with_different_attributes(self, coincident_doc: Document) -> None:
        """Same position but different normal is a different vertex."""
        from glb_compress.cleaners import weld

        assert weld(coincident_doc) == 0
        assert coincident_doc.meshes[0].primitives[0].get_vertex_count() == 6
