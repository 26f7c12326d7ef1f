"""Static animation track removal with cross-animation consensus."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from glb_compress.scene.model import Channel, Document, Node, Sampler
from glb_compress.utils.constants import STATIC_TRACK_TOLERANCE

TrackKey = tuple[Node, str]


@dataclass
class TrackInfo:
    """Pass-1 result for one channel."""

    is_static: bool
    value: np.ndarray | None
    keyframes: int


@dataclass
class StaticTrackReport:
    removed: int = 0
    kept_no_consensus: int = 0
    samplers_disposed: int = 0


def keyframe_rows(sampler: Sampler) -> np.ndarray:
    """Sampler output as one row per keyframe."""
    stride = sampler.keyframe_stride()
    values = sampler.get_output().get_float_elements().reshape(-1)
    if stride == 0:
        return values.reshape(0, 0)
    return values.reshape(-1, stride)


def analyze_track(sampler: Sampler, tolerance: float = STATIC_TRACK_TOLERANCE) -> TrackInfo:
    """
    Decide whether every keyframe of a sampler holds the same value.

    Cubic spline keyframes are ``[in_tangent, value, out_tangent]``; they are
    static only when the values agree and every tangent is zero.
    """
    rows = keyframe_rows(sampler)
    keyframes = len(rows)
    if keyframes == 0 or rows.shape[1] == 0:
        return TrackInfo(is_static=False, value=None, keyframes=keyframes)

    if sampler.interpolation == "CUBICSPLINE":
        width = rows.shape[1] // 3
        tangents = np.concatenate([rows[:, :width], rows[:, 2 * width :]], axis=1)
        if np.any(np.abs(tangents) > tolerance):
            return TrackInfo(is_static=False, value=None, keyframes=keyframes)
        rows = rows[:, width : 2 * width]

    first = rows[0]
    if np.all(np.abs(rows - first) <= tolerance):
        return TrackInfo(is_static=True, value=first.copy(), keyframes=keyframes)
    return TrackInfo(is_static=False, value=None, keyframes=keyframes)


def _values_match(a: np.ndarray | list[float] | None, b: np.ndarray, tolerance: float) -> bool:
    if a is None:
        return False
    a = np.asarray(a, dtype=np.float64)
    return a.shape == b.shape and bool(np.all(np.abs(a - b) <= tolerance))


def remove_static_tracks_with_bake(
    doc: Document, tolerance: float = STATIC_TRACK_TOLERANCE
) -> StaticTrackReport:
    """
    Remove animation channels that are constant at the rest pose in every clip.

    A ``(node, path)`` key is removable only when every channel targeting it,
    across all animations, is static, the static values agree, and they match
    the node's rest value. Channels that are static in some clips but not
    all are kept, since deleting them would let other clips' blending pick up
    an undefined value. Samplers are disposed once no channel uses them.
    """
    report = StaticTrackReport()
    animations = doc.list_animations()
    if not animations:
        return report

    # Pass 1: per-channel static test
    track_info: dict[Channel, TrackInfo] = {}
    tracks_by_key: dict[TrackKey, list[TrackInfo]] = {}
    for animation in animations:
        for channel in animation.list_channels():
            sampler = channel.get_sampler()
            node = channel.get_target_node()
            path = channel.get_target_path()
            if sampler is None or node is None or not path:
                continue
            info = analyze_track(sampler, tolerance)
            track_info[channel] = info
            tracks_by_key.setdefault((node, path), []).append(info)

    # Pass 2: cross-animation consensus against the rest pose
    removable: set[TrackKey] = set()
    for key, tracks in tracks_by_key.items():
        if not tracks or not all(t.is_static for t in tracks):
            continue
        reference = tracks[0].value
        assert reference is not None
        if not all(_values_match(t.value, reference, tolerance) for t in tracks):
            continue
        node, path = key
        if _values_match(node.get_rest_value(path), reference, tolerance):
            removable.add(key)

    # Pass 3: dispose consensus tracks only
    for animation in animations:
        for channel in animation.list_channels():
            node = channel.get_target_node()
            path = channel.get_target_path()
            if node is None or not path:
                continue
            if (node, path) in removable:
                sampler = channel.get_sampler()
                channel.dispose()
                if sampler is not None and sampler.ref_count == 0:
                    sampler.dispose()
                    report.samplers_disposed += 1
                report.removed += 1
            else:
                info = track_info.get(channel)
                if info is not None and info.is_static and info.keyframes > 1:
                    report.kept_no_consensus += 1

    return report
