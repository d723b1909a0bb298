"""
Decision and output stage.

Turns per-pixel scores (posterior weights or vote counts) into hard labels and
assembles the full-size output images. Pixels outside the mask copy the label
of the first source.
"""

from typing import Optional, Sequence, Tuple

import numpy as np


def default_preference(number_of_classes: int) -> np.ndarray:
    """Each class prefers itself by its own numeric value."""
    return np.arange(number_of_classes, dtype=np.int64)


def resolve_labels(
    scores: np.ndarray,
    preference: Optional[Sequence[int]] = None,
    undecided_label: Optional[int] = None,
    tie_policy: str = "preference",
    tolerance: float = 0.0,
) -> np.ndarray:
    """
    Pick the label with the maximal score for every row.

    Labels whose score is within ``tolerance`` of the maximum are tied. Ties are
    broken by the lowest preference value, or assigned ``undecided_label`` when
    ``tie_policy`` is "undecided".

    Args:
        scores: Array of shape (n, K)
        preference: Tie-break rank per class, lower wins (default: class index)
        undecided_label: Label for unresolved ties
        tie_policy: "preference" or "undecided"
        tolerance: Absolute tolerance for ties

    Returns:
        Integer labels of shape (n,)
    """
    number_of_classes = scores.shape[1]
    if preference is None:
        preference = default_preference(number_of_classes)
    preference = np.asarray(preference, dtype=np.int64)

    max_scores = scores.max(axis=1, keepdims=True)
    candidates = scores >= max_scores - tolerance

    # Among tied candidates the lowest preference wins
    ranked = np.where(candidates, preference[np.newaxis, :], np.iinfo(np.int64).max)
    labels = ranked.argmin(axis=1).astype(np.int64)

    if tie_policy == "undecided":
        if undecided_label is None:
            raise ValueError("undecided_label is required for the 'undecided' tie policy")
        tied = candidates.sum(axis=1) > 1
        labels[tied] = undecided_label

    return labels


def output_dtype(input_dtype: np.dtype, largest_label: int) -> np.dtype:
    """
    Smallest integer dtype holding both the input labels and ``largest_label``.

    An 8 bit input using all 256 labels is promoted so the undecided label fits.
    """
    input_dtype = np.dtype(input_dtype)
    if not np.issubdtype(input_dtype, np.integer):
        input_dtype = np.dtype(np.int64)
    return np.promote_types(input_dtype, np.min_scalar_type(int(largest_label)))


def assemble_label_image(
    labels: np.ndarray,
    mask: np.ndarray,
    first_source: np.ndarray,
    shape: Tuple[int, ...],
    dtype: np.dtype,
) -> np.ndarray:
    """
    Build the full consensus image.

    Args:
        labels: Decided labels for the pixels inside the mask
        mask: Flat boolean mask
        first_source: Flat labels of source 0
        shape: Spatial shape of the output
        dtype: Output dtype

    Returns:
        Fresh label image of the given shape
    """
    output = first_source.astype(dtype, copy=True)
    output[mask] = labels.astype(dtype)
    return output.reshape(shape)


def assemble_probability_images(
    posterior: np.ndarray,
    mask: np.ndarray,
    first_source: np.ndarray,
    shape: Tuple[int, ...],
    dtype: np.dtype = np.float32,
) -> np.ndarray:
    """
    Build one probability image per class from the posterior.

    Pixels outside the mask carry a one-hot vector of source 0's label, which
    matches the hard output there.

    Args:
        posterior: Posterior weights of the pixels inside the mask, shape (n, K)
        mask: Flat boolean mask
        first_source: Flat labels of source 0
        shape: Spatial shape
        dtype: Output float type

    Returns:
        Array of shape (K, *shape)
    """
    number_of_classes = posterior.shape[1]
    flat = np.zeros((number_of_classes, mask.size), dtype=dtype)
    flat[:, mask] = posterior.T

    outside = np.flatnonzero(~mask)
    if outside.size:
        flat[first_source[outside], outside] = 1.0

    return flat.reshape((number_of_classes,) + tuple(shape))
