"""Skin weight normalization."""

import numpy as np

from glb_compress.scene.model import Accessor, Document, Semantic

WEIGHT_SUM_TOLERANCE = 1e-6


def normalize_weights(doc: Document) -> int:
    """
    Rescale ``WEIGHTS_0`` so every influenced vertex sums to 1.0.

    Vertices whose weights are all zero are left alone. Normalized integer
    weights are rescaled in integer space with the rounding residual added
    to the largest component, so they sum to the type maximum exactly.

    Returns the number of vertices fixed.
    """
    fixed = 0
    usage = doc.accessor_usage()
    for _, primitive in doc.iter_primitives():
        weights = primitive.get_attribute(Semantic.WEIGHTS_0)
        if weights is None:
            continue
        if usage[id(weights)] > 1:
            # Shared data may back other attributes; normalize a private copy
            usage[id(weights)] -= 1
            weights = weights.clone()
            primitive.set_attribute(Semantic.WEIGHTS_0, weights)
            usage[id(weights)] = 1
        fixed += _normalize_accessor(weights)
    return fixed


def _normalize_accessor(weights: Accessor) -> int:
    elements = weights.get_elements()
    if elements.dtype.kind == "f":
        values = elements.astype(np.float64)
        sums = values.sum(axis=1)
        bad = (sums > 0) & (np.abs(sums - 1.0) > WEIGHT_SUM_TOLERANCE)
        if not bad.any():
            return 0
        values[bad] /= sums[bad, None]
        weights.set_array(values.astype(elements.dtype))
        return int(np.count_nonzero(bad))

    # Normalized unsigned integers: 1.0 is the type maximum
    top = int(np.iinfo(elements.dtype).max)
    values = elements.astype(np.int64)
    sums = values.sum(axis=1)
    bad = (sums > 0) & (sums != top)
    if not bad.any():
        return 0
    scaled = np.floor(values[bad] * (top / sums[bad, None]) + 0.5).astype(np.int64)
    residual = top - scaled.sum(axis=1)
    largest = np.argmax(scaled, axis=1)
    scaled[np.arange(len(scaled)), largest] += residual
    values[bad] = np.clip(scaled, 0, top)
    weights.set_array(values.astype(elements.dtype))
    return int(np.count_nonzero(bad))
