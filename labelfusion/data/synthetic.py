"""
Synthetic rater generation.

Creates a ground-truth label image made of random blobs and a set of rater
segmentations of it, each with its own accuracy. Used for benchmarking the
fusion methods against a known truth.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy import ndimage


@dataclass
class SyntheticRaters:
    """Ground truth and rater segmentations of one synthetic scene."""

    ground_truth: np.ndarray
    segmentations: List[np.ndarray]
    accuracies: List[float]
    number_of_classes: int
    seed: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def make_ground_truth(
    shape: Sequence[int],
    number_of_classes: int,
    blobs_per_class: int = 3,
    radius_range: Tuple[float, float] = (0.1, 0.25),
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Paint random ellipsoidal blobs of labels 1..K-1 on a background of 0.

    Args:
        shape: Spatial shape (2D or 3D)
        number_of_classes: K, including the background
        blobs_per_class: Blobs painted per foreground class
        radius_range: Blob radius range as a fraction of the smallest dimension
        rng: Random generator

    Returns:
        Integer label image
    """
    rng = rng or np.random.default_rng()
    shape = tuple(int(s) for s in shape)
    labels = np.zeros(shape, dtype=np.int16)
    grid = np.indices(shape, dtype=np.float64)
    min_dim = min(shape)

    for label in range(1, number_of_classes):
        for _ in range(blobs_per_class):
            center = [rng.uniform(0, s) for s in shape]
            radii = [
                rng.uniform(*radius_range) * min_dim for _ in shape
            ]
            distance = sum(
                ((axis - c) / r) ** 2 for axis, c, r in zip(grid, center, radii)
            )
            labels[distance <= 1.0] = label

    return labels


def corrupt_labels(
    ground_truth: np.ndarray,
    accuracy: float,
    number_of_classes: int,
    boundary_shift: int = 0,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    Simulate one rater.

    Every pixel keeps its true label with probability ``accuracy`` and is
    otherwise replaced by a uniformly drawn different label. A positive
    ``boundary_shift`` first grows every foreground structure by that many
    pixels, imitating a rater that systematically over-segments.

    Args:
        ground_truth: True label image
        accuracy: Probability of reporting the true label
        number_of_classes: K
        boundary_shift: Dilation iterations applied before the label noise
        rng: Random generator

    Returns:
        Rater label image
    """
    rng = rng or np.random.default_rng()
    labels = ground_truth.copy()

    if boundary_shift > 0:
        for label in range(1, number_of_classes):
            grown = ndimage.binary_dilation(ground_truth == label, iterations=boundary_shift)
            labels[grown & (labels == 0)] = label

    if number_of_classes < 2:
        return labels

    flip = rng.random(labels.shape) >= accuracy
    # Offset in 1..K-1 guarantees a different label
    offsets = rng.integers(1, number_of_classes, size=labels.shape)
    labels[flip] = (labels[flip] + offsets[flip]) % number_of_classes
    return labels


def generate_raters(
    shape: Sequence[int] = (64, 64),
    number_of_classes: int = 3,
    accuracies: Sequence[float] = (0.95, 0.8, 0.6),
    blobs_per_class: int = 3,
    boundary_shifts: Optional[Sequence[int]] = None,
    seed: Optional[int] = None,
) -> SyntheticRaters:
    """
    Generate a ground truth and one segmentation per accuracy.

    Args:
        shape: Spatial shape of the scene
        number_of_classes: K, including background
        accuracies: One accuracy per rater
        blobs_per_class: Blobs per foreground class
        boundary_shifts: Optional dilation per rater
        seed: Random seed

    Returns:
        Synthetic raters
    """
    if boundary_shifts is not None and len(boundary_shifts) != len(accuracies):
        raise ValueError("boundary_shifts must have one entry per rater")

    rng = np.random.default_rng(seed)
    ground_truth = make_ground_truth(shape, number_of_classes, blobs_per_class, rng=rng)
    shifts = boundary_shifts or [0] * len(accuracies)

    segmentations = [
        corrupt_labels(ground_truth, accuracy, number_of_classes, boundary_shift=shift, rng=rng)
        for accuracy, shift in zip(accuracies, shifts)
    ]

    return SyntheticRaters(
        ground_truth=ground_truth,
        segmentations=segmentations,
        accuracies=[float(a) for a in accuracies],
        number_of_classes=number_of_classes,
        seed=seed,
        metadata={"shape": list(shape), "boundary_shifts": list(shifts)},
    )
