"""Tests for lossy keyframe reduction."""

from __future__ import annotations

import math

import numpy as np

from glb_compress.scene import Accessor, Document


def _quat_z(degrees: float) -> list[float]:
    half = math.radians(degrees) / 2
    return [0.0, 0.0, math.sin(half), math.cos(half)]


class TestResample:
    """Tests for resample function."""

    def test_drops_linear_midpoints(self, make_track) -> None:
        """Keyframes on a straight line between neighbours are removed."""
        from glb_compress.cleaners import resample

        doc = Document()
        animation = doc.create_animation("slide")
        make_track(animation, doc.create_node("box"), "translation", [[0, 0, 0], [1, 0, 0], [2, 0, 0]])

        removed = resample(doc)

        sampler = animation.samplers[0]
        assert removed == 1
        assert sampler.get_input().get_array().tolist() == [0, 2]
        assert sampler.get_output().get_elements().tolist() == [[0, 0, 0], [2, 0, 0]]

    def test_keeps_keyframes_that_change_direction(self, make_track) -> None:
        """A peak between two keyframes is real motion."""
        from glb_compress.cleaners import resample

        doc = Document()
        animation = doc.create_animation("bounce")
        make_track(animation, doc.create_node("ball"), "translation", [[0, 0, 0], [0, 5, 0], [0, 0, 0]])

        assert resample(doc) == 0

    def test_rotation_uses_spherical_interpolation(self, make_track) -> None:
        """An evenly turning rotation with uneven spacing is still redundant."""
        from glb_compress.cleaners import resample

        doc = Document()
        animation = doc.create_animation("turn")
        make_track(
            animation,
            doc.create_node("wheel"),
            "rotation",
            [_quat_z(0), _quat_z(30), _quat_z(90)],
            times=[0, 1, 3],
        )

        assert resample(doc) == 1
        assert animation.samplers[0].get_output().get_count() == 2

    def test_step_drops_repeated_values(self, make_track) -> None:
        """STEP keyframes that repeat the held value are removed."""
        from glb_compress.cleaners import resample

        doc = Document()
        animation = doc.create_animation("toggle")
        make_track(
            animation,
            doc.create_node("lamp"),
            "scale",
            [[1, 1, 1], [1, 1, 1], [1, 1, 1], [2, 2, 2]],
            interpolation="STEP",
        )

        assert resample(doc) == 2
        assert animation.samplers[0].get_input().get_array().tolist() == [0, 3]

    def test_cubic_spline_untouched(self, make_track) -> None:
        """Cubic spline samplers are not resampled."""
        from glb_compress.cleaners import resample

        doc = Document()
        animation = doc.create_animation("curve")
        make_track(
            animation,
            doc.create_node("cam"),
            "translation",
            [row for x in (0, 1, 2) for row in ([0, 0, 0], [x, 0, 0], [0, 0, 0])],
            times=[0, 1, 2],
            interpolation="CUBICSPLINE",
        )

        assert resample(doc) == 0

    def test_shared_input_left_intact(self) -> None:
        """Resampling one sampler does not shorten another's shared times."""
        from glb_compress.cleaners import resample

        doc = Document()
        node = doc.create_node("rig")
        animation = doc.create_animation("clip")
        times = Accessor(np.array([0, 1, 2], dtype=np.float32))
        linear = animation.create_sampler(
            times, Accessor(np.array([[0, 0, 0], [1, 0, 0], [2, 0, 0]], dtype=np.float32), "VEC3")
        )
        wobbly = animation.create_sampler(
            times, Accessor(np.array([[1, 1, 1], [3, 3, 3], [1, 1, 1]], dtype=np.float32), "VEC3")
        )
        animation.create_channel(linear, node, "translation")
        animation.create_channel(wobbly, node, "scale")

        resample(doc)

        assert linear.get_input() is not times
        assert wobbly.get_input() is times
        assert times.get_count() == 3

    def test_short_tracks_skipped(self, make_track) -> None:
        """Two keyframes cannot lose any."""
        from glb_compress.cleaners import resample

        doc = Document()
        make_track(doc.create_animation("pair"), doc.create_node("n"), "translation", [[0, 0, 0], [1, 0, 0]])

        assert resample(doc) == 0
