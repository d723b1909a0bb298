"""
Label space discovery and input validation.

Determines the number of classes K and the label written for undecided pixels,
and converts the input segmentations into flat integer arrays.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from labelfusion.fusion.errors import (
    ConfigurationError,
    EmptyMaskError,
    ImageShapeMismatchError,
    LabelOutOfRangeError,
)


@dataclass(frozen=True)
class LabelSpace:
    """Resolved label space of one run."""

    number_of_classes: int
    undecided_label: int
    max_observed_label: int


def as_label_image(image: Any, index: int) -> np.ndarray:
    """
    Convert a segmentation to an integer array.

    Floating point arrays (e.g. from ``nibabel.get_fdata``) are accepted when
    every value is integral.

    Args:
        image: Array-like label image
        index: Source index, used in error messages

    Returns:
        Integer label array with the original shape
    """
    array = np.asarray(image)
    if array.dtype == np.bool_:
        return array.astype(np.int64)
    if np.issubdtype(array.dtype, np.integer):
        return array
    if np.issubdtype(array.dtype, np.floating):
        if not np.all(np.isfinite(array)) or np.any(np.mod(array, 1) != 0):
            raise ConfigurationError(f"Source {index} contains non-integral label values")
        return array.astype(np.int64)
    raise ConfigurationError(f"Source {index} has unsupported dtype {array.dtype}")


def check_shapes(
    sources: Sequence[np.ndarray],
    mask: Optional[np.ndarray] = None,
    prior_images: Optional[Sequence[np.ndarray]] = None,
) -> Tuple[int, ...]:
    """
    Verify that all inputs share one spatial shape.

    Returns:
        The common shape

    Raises:
        ConfigurationError: If no sources are given
        ImageShapeMismatchError: On any shape mismatch
    """
    if len(sources) == 0:
        raise ConfigurationError("At least one input segmentation is required")

    shape = tuple(sources[0].shape)
    for i, source in enumerate(sources[1:], start=1):
        if tuple(source.shape) != shape:
            raise ImageShapeMismatchError(
                f"Source {i} has shape {tuple(source.shape)}, expected {shape}"
            )

    if mask is not None and tuple(np.shape(mask)) != shape:
        raise ImageShapeMismatchError(f"Mask has shape {tuple(np.shape(mask))}, expected {shape}")

    if prior_images is not None:
        for k, prior_image in enumerate(prior_images):
            if tuple(np.shape(prior_image)) != shape:
                raise ImageShapeMismatchError(
                    f"Prior image {k} has shape {tuple(np.shape(prior_image))}, expected {shape}"
                )

    return shape


def flatten_inputs(
    sources: Sequence[Any],
    mask: Optional[Any] = None,
) -> Tuple[List[np.ndarray], np.ndarray, Tuple[int, ...]]:
    """
    Validate the inputs and flatten them to one dimension.

    Args:
        sources: S label images of identical shape
        mask: Optional image; non-zero pixels take part in estimation

    Returns:
        (flat integer sources, flat boolean mask, spatial shape)
    """
    arrays = [as_label_image(source, i) for i, source in enumerate(sources)]
    shape = check_shapes(arrays, mask)

    flat_sources = [array.reshape(-1) for array in arrays]
    if mask is None:
        flat_mask = np.ones(flat_sources[0].size, dtype=bool)
    else:
        flat_mask = np.asarray(mask).reshape(-1) != 0

    if not flat_mask.any():
        raise EmptyMaskError("The mask excludes every pixel; confusion matrices cannot be estimated")

    return flat_sources, flat_mask, shape


def discover_label_space(
    sources: Sequence[np.ndarray],
    number_of_classes: Optional[int] = None,
    undecided_label: Optional[int] = None,
    logger: Optional[Any] = None,
) -> LabelSpace:
    """
    Determine K and the undecided label.

    K is the declared class count when given, otherwise the largest label in
    any source plus one. The default undecided label is the largest observed
    label plus one, raised to K when more classes were declared than observed.

    Args:
        sources: Integer label arrays
        number_of_classes: Declared class count (optional)
        undecided_label: Explicit undecided label (optional)
        logger: Logger instance

    Returns:
        The resolved label space

    Raises:
        LabelOutOfRangeError: If a label is negative or not below a declared K
    """
    max_label = 0
    for i, source in enumerate(sources):
        if source.size == 0:
            continue
        low = int(source.min())
        high = int(source.max())
        limit = number_of_classes if number_of_classes is not None else high + 1
        if low < 0:
            raise LabelOutOfRangeError(i, low, limit)
        if number_of_classes is not None and high >= number_of_classes:
            raise LabelOutOfRangeError(i, high, number_of_classes)
        max_label = max(max_label, high)

    if number_of_classes is None:
        number_of_classes = max_label + 1

    if undecided_label is None:
        undecided_label = max(max_label + 1, number_of_classes)
    elif undecided_label < number_of_classes and logger:
        logger.warning(
            f"Undecided label {undecided_label} coincides with a class label "
            f"(K = {number_of_classes})"
        )

    if logger:
        logger.info(
            f"Label space: {number_of_classes} classes, undecided label {undecided_label}"
        )

    return LabelSpace(
        number_of_classes=int(number_of_classes),
        undecided_label=int(undecided_label),
        max_observed_label=int(max_label),
    )
