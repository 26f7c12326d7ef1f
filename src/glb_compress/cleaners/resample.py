"""Lossy keyframe reduction for LINEAR and STEP animation samplers."""

import numpy as np

from glb_compress.cleaners.animation import keyframe_rows
from glb_compress.scene.model import Accessor, Document, Sampler
from glb_compress.utils.constants import RESAMPLE_TOLERANCE


def _slerp(a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
    dot = float(np.dot(a, b))
    if dot < 0.0:
        b = -b
        dot = -dot
    if dot > 0.9995:
        out = a + t * (b - a)
        return out / np.linalg.norm(out)
    theta = np.arccos(dot)
    sin_theta = np.sin(theta)
    return (np.sin((1 - t) * theta) * a + np.sin(t * theta) * b) / sin_theta


def _interpolate(a: np.ndarray, b: np.ndarray, t: float, rotation: bool) -> np.ndarray:
    if rotation:
        return _slerp(a, b, t)
    return a + t * (b - a)


def _keep_mask(
    times: np.ndarray, rows: np.ndarray, interpolation: str, rotation: bool, tolerance: float
) -> np.ndarray:
    """Greedy pass: keep a keyframe unless its neighbours reproduce it."""
    count = len(times)
    keep = np.ones(count, dtype=bool)
    last = 0
    for i in range(1, count - 1):
        if interpolation == "STEP":
            redundant = np.all(np.abs(rows[i] - rows[last]) <= tolerance)
        else:
            span = times[i + 1] - times[last]
            t = 0.0 if span <= 0 else (times[i] - times[last]) / span
            expected = _interpolate(rows[last], rows[i + 1], t, rotation)
            redundant = np.all(np.abs(rows[i] - expected) <= tolerance)
        if redundant:
            keep[i] = False
        else:
            last = i
    return keep


def resample_sampler(sampler: Sampler, rotation: bool, tolerance: float = RESAMPLE_TOLERANCE) -> int:
    """Drop redundant keyframes from one sampler; returns keyframes removed."""
    if sampler.interpolation not in ("LINEAR", "STEP"):
        return 0
    times = sampler.get_input().get_float_elements().reshape(-1)
    if len(times) < 3:
        return 0
    rows = keyframe_rows(sampler)
    keep = _keep_mask(times, rows, sampler.interpolation, rotation, tolerance)
    dropped = int(len(keep) - np.count_nonzero(keep))
    if dropped == 0:
        return 0

    # Fresh accessors: inputs are often shared between samplers
    old_input, old_output = sampler.get_input(), sampler.get_output()
    new_input = Accessor(old_input.get_array()[keep], old_input.type, name=old_input.name)
    new_output = Accessor(
        old_output.get_elements().reshape(len(keep), -1)[keep],
        old_output.type,
        normalized=old_output.normalized,
        name=old_output.name,
    )
    sampler.input = new_input
    sampler.output = new_output
    return dropped


def resample(doc: Document, tolerance: float = RESAMPLE_TOLERANCE) -> int:
    """
    Remove keyframes that linear (or step) interpolation already reproduces.

    Rotation tracks are compared against spherical interpolation. Cubic
    spline samplers are left unchanged. Returns the number of keyframes removed.
    """
    removed = 0
    for animation in doc.list_animations():
        rotation_samplers = {
            id(c.sampler) for c in animation.channels if c.target_path == "rotation"
        }
        for sampler in animation.list_samplers():
            removed += resample_sampler(sampler, id(sampler) in rotation_samplers, tolerance)
    return removed
