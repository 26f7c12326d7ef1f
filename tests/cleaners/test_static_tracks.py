"""Tests for static animation track removal with cross-animation consensus."""

from __future__ import annotations

import numpy as np

from glb_compress.scene import Accessor, Document


def _rig() -> tuple[Document, list]:
    doc = Document()
    hips = doc.create_node("hips", translation=[0.0, 1.0, 0.0])
    arm = doc.create_node("arm")
    return doc, [hips, arm]


class TestAnalyzeTrack:
    """Tests for analyze_track function."""

    def test_constant_linear_track(self) -> None:
        """Identical keyframes are static and report their value."""
        from glb_compress.cleaners.animation import analyze_track

        doc, (hips, _) = _rig()
        animation = doc.create_animation("idle")
        sampler = animation.create_sampler(
            Accessor(np.array([0, 1, 2], dtype=np.float32)),
            Accessor(np.tile([0.0, 1.0, 0.0], 3).astype(np.float32), "VEC3"),
        )

        info = analyze_track(sampler)

        assert info.is_static is True
        assert info.keyframes == 3
        assert info.value.tolist() == [0.0, 1.0, 0.0]

    def test_cubic_spline_needs_flat_tangents(self, make_track) -> None:
        """Cubic keyframes are static only when every tangent is zero."""
        from glb_compress.cleaners.animation import analyze_track

        doc, (hips, _) = _rig()
        animation = doc.create_animation("idle")
        flat = [[0, 0, 0], [0, 1, 0], [0, 0, 0]] * 2
        sloped = [[0, 0.5, 0], [0, 1, 0], [0, 0, 0]] * 2
        make_track(animation, hips, "translation", flat, times=[0, 1], interpolation="CUBICSPLINE")
        make_track(animation, hips, "translation", sloped, times=[0, 1], interpolation="CUBICSPLINE")

        flat_info = analyze_track(animation.samplers[0])
        sloped_info = analyze_track(animation.samplers[1])

        assert flat_info.is_static is True
        assert flat_info.value.tolist() == [0, 1, 0]
        assert sloped_info.is_static is False

    def test_empty_sampler_is_not_static(self) -> None:
        """A sampler without keyframes has no value to compare."""
        from glb_compress.cleaners.animation import analyze_track

        doc, _ = _rig()
        animation = doc.create_animation("empty")
        sampler = animation.create_sampler(
            Accessor(np.zeros(0, dtype=np.float32)), Accessor(np.zeros(0, dtype=np.float32), "VEC3")
        )

        assert analyze_track(sampler).is_static is False


class TestRemoveStaticTracksWithBake:
    """Tests for remove_static_tracks_with_bake function."""

    def test_removes_track_static_at_rest_in_every_clip(self, make_track) -> None:
        """Consensus across clips at the rest pose removes every channel."""
        from glb_compress.cleaners import remove_static_tracks_with_bake

        doc, (hips, _) = _rig()
        for name in ("idle", "wave"):
            make_track(doc.create_animation(name), hips, "translation", [[0, 1, 0]] * 3)

        report = remove_static_tracks_with_bake(doc)

        assert report.removed == 2
        assert report.samplers_disposed == 2
        assert report.kept_no_consensus == 0
        assert all(not a.channels and not a.samplers for a in doc.animations)

    def test_keeps_track_when_any_clip_moves_it(self, make_track) -> None:
        """One dynamic clip blocks removal in all clips."""
        from glb_compress.cleaners import remove_static_tracks_with_bake

        doc, (hips, _) = _rig()
        make_track(doc.create_animation("idle"), hips, "translation", [[0, 1, 0]] * 3)
        make_track(
            doc.create_animation("jump"),
            hips,
            "translation",
            [[0, 1, 0], [0, 2, 0], [0, 1, 0]],
        )

        report = remove_static_tracks_with_bake(doc)

        assert report.removed == 0
        assert report.kept_no_consensus == 1
        assert [len(a.channels) for a in doc.animations] == [1, 1]

    def test_rotation_static_and_equal_in_two_clips_removed_from_both(self, make_track) -> None:
        """The same resting rotation held in clips "a" and "b" goes from both."""
        from glb_compress.cleaners import remove_static_tracks_with_bake

        doc, (_, arm) = _rig()
        first = doc.create_animation("a")
        second = doc.create_animation("b")
        make_track(first, arm, "rotation", [[0, 0, 0, 1]] * 2)
        make_track(second, arm, "rotation", [[0, 0, 0, 1]] * 4)

        report = remove_static_tracks_with_bake(doc)

        assert report.removed == 2
        assert first.channels == []
        assert second.channels == []

    def test_rotation_dynamic_in_one_clip_kept_in_both(self, make_track) -> None:
        """A rotation held in "a" but turning in "b" stays in both clips."""
        from glb_compress.cleaners import remove_static_tracks_with_bake

        doc, (_, arm) = _rig()
        first = doc.create_animation("a")
        second = doc.create_animation("b")
        make_track(first, arm, "rotation", [[0, 0, 0, 1]] * 2)
        make_track(second, arm, "rotation", [[0, 0, 0, 1], [0, 0, 0.7071068, 0.7071068]])

        report = remove_static_tracks_with_bake(doc)

        assert report.removed == 0
        assert [c.target_path for c in first.channels] == ["rotation"]
        assert [c.target_path for c in second.channels] == ["rotation"]

    def test_keeps_static_track_off_rest_pose(self, make_track) -> None:
        """A constant value that differs from the rest pose is a real pose."""
        from glb_compress.cleaners import remove_static_tracks_with_bake

        doc, (hips, _) = _rig()
        make_track(doc.create_animation("crouch"), hips, "translation", [[0, 0.5, 0]] * 2)

        report = remove_static_tracks_with_bake(doc)

        assert report.removed == 0
        assert report.kept_no_consensus == 1

    def test_keeps_tracks_whose_static_values_disagree(self, make_track) -> None:
        """Static in every clip but at different values is not consensus."""
        from glb_compress.cleaners import remove_static_tracks_with_bake

        doc, (hips, _) = _rig()
        make_track(doc.create_animation("a"), hips, "translation", [[0, 1, 0]] * 2)
        make_track(doc.create_animation("b"), hips, "translation", [[0, 3, 0]] * 2)

        report = remove_static_tracks_with_bake(doc)

        assert report.removed == 0
        assert report.kept_no_consensus == 2

    def test_only_matching_key_is_removed(self, make_track) -> None:
        """Other paths on the same node are judged separately."""
        from glb_compress.cleaners import remove_static_tracks_with_bake

        doc, (hips, arm) = _rig()
        animation = doc.create_animation("idle")
        make_track(animation, hips, "translation", [[0, 1, 0]] * 2)
        make_track(animation, arm, "rotation", [[0, 0, 0, 1], [0, 0, 0.7071068, 0.7071068]])

        report = remove_static_tracks_with_bake(doc)

        assert report.removed == 1
        assert [c.target_path for c in animation.channels] == ["rotation"]

    def test_shared_sampler_disposed_once(self, make_track) -> None:
        """A sampler used by two removed channels is disposed after the last one."""
        from glb_compress.cleaners import remove_static_tracks_with_bake

        doc = Document()
        left = doc.create_node("left")
        right = doc.create_node("right")
        animation = doc.create_animation("idle")
        make_track(animation, left, "scale", [[1, 1, 1]] * 2)
        animation.create_channel(animation.samplers[0], right, "scale")

        report = remove_static_tracks_with_bake(doc)

        assert report.removed == 2
        assert report.samplers_disposed == 1
        assert animation.samplers == []

    def test_morph_weights_compare_against_mesh_defaults(self, make_track, build_mesh) -> None:
        """Weights tracks fall back to the mesh's default weights."""
        from glb_compress.cleaners import remove_static_tracks_with_bake

        doc = Document()
        build_mesh(doc, [[0, 0, 0], [1, 0, 0], [0, 1, 0]], [0, 1, 2], name="face")
        doc.meshes[0].weights = [0.5, 0.0]
        make_track(doc.create_animation("blink"), doc.nodes[0], "weights", [[0.5, 0.0]] * 3)

        report = remove_static_tracks_with_bake(doc)

        assert report.removed == 1

    def test_no_animations(self, triangle_doc: Document) -> None:
        """Documents without animations report nothing."""
        from glb_compress.cleaners import remove_static_tracks_with_bake

        report = remove_static_tracks_with_bake(triangle_doc)

        assert (report.removed, report.kept_no_consensus, report.samplers_disposed) == (0, 0, 0)
