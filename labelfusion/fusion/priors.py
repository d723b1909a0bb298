"""
Prior class probabilities.

Priors come from the caller (a global vector and/or one probability image per
class) or are estimated once from the label frequencies of all sources.
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np

from labelfusion.fusion.errors import ConfigurationError

# Lower bound used whenever a probability enters a logarithm
PROBABILITY_FLOOR = 1e-12


@dataclass
class PriorModel:
    """
    Prior probabilities used by the E-step.

    Attributes:
        probabilities: Global prior vector, shape (K,)
        pixel_probabilities: Optional per-pixel priors over the flattened
            image, shape (N, K); overrides the global vector where present
        origin: "user", "images" or "estimated"
    """

    probabilities: np.ndarray
    pixel_probabilities: Optional[np.ndarray] = None
    origin: str = "estimated"

    def log_priors(self, pixel_indices: np.ndarray) -> np.ndarray:
        """
        Log priors for a block of pixels.

        Args:
            pixel_indices: Flat indices of the pixels in the block

        Returns:
            Array broadcastable to (len(pixel_indices), K)
        """
        if self.pixel_probabilities is not None:
            block = self.pixel_probabilities[pixel_indices]
            return np.log(np.maximum(block, PROBABILITY_FLOOR))
        return np.log(np.maximum(self.probabilities, PROBABILITY_FLOOR))[np.newaxis, :]


def estimate_prior_probabilities(
    sources: Sequence[np.ndarray],
    number_of_classes: int,
    floor: float = 1e-6,
    logger: Optional[Any] = None,
) -> np.ndarray:
    """
    Estimate priors from label frequencies.

    The prior of class k is the number of times any source reports k at any
    pixel, masked or not, divided by the total number of reports. Classes
    that never occur receive ``floor`` before renormalisation so later
    logarithms stay finite.

    Args:
        sources: Flat integer label arrays
        number_of_classes: K
        floor: Minimum probability per class
        logger: Logger instance

    Returns:
        Prior vector of shape (K,), summing to 1
    """
    counts = np.zeros(number_of_classes, dtype=np.float64)
    for source in sources:
        counts += np.bincount(source, minlength=number_of_classes)[:number_of_classes]

    total = counts.sum()
    priors = counts / total if total > 0 else np.full(number_of_classes, 1.0 / number_of_classes)

    floored = priors < floor
    if floored.any():
        if logger:
            logger.warning(
                f"Classes {np.flatnonzero(floored).tolist()} have (near) zero frequency; "
                f"flooring prior to {floor:g}"
            )
        priors = np.maximum(priors, floor)
        priors = priors / priors.sum()

    return priors


def build_prior_model(
    sources: Sequence[np.ndarray],
    mask: np.ndarray,
    number_of_classes: int,
    prior_probabilities: Optional[Sequence[float]] = None,
    prior_images: Optional[Sequence[Any]] = None,
    floor: float = 1e-6,
    logger: Optional[Any] = None,
) -> PriorModel:
    """
    Resolve the priors of one run.

    Args:
        sources: Flat integer label arrays
        mask: Flat boolean mask; with prior images the reported global vector
            is their mean over the pixels inside it
        number_of_classes: K
        prior_probabilities: Caller supplied global priors (used unmodified)
        prior_images: Caller supplied per-class prior images (one per class)
        floor: Floor for estimated priors
        logger: Logger instance

    Returns:
        Prior model for the E-step
    """
    if prior_probabilities is not None:
        probabilities = np.asarray(prior_probabilities, dtype=np.float64)
        origin = "user"
    else:
        probabilities = estimate_prior_probabilities(
            sources, number_of_classes, floor=floor, logger=logger
        )
        origin = "estimated"

    pixel_probabilities = None
    if prior_images is not None:
        if len(prior_images) != number_of_classes:
            raise ConfigurationError(
                f"Expected {number_of_classes} prior probability images, got {len(prior_images)}"
            )
        pixel_probabilities = np.stack(
            [np.asarray(image, dtype=np.float64).reshape(-1) for image in prior_images],
            axis=1,
        )
        if not np.all(np.isfinite(pixel_probabilities)) or np.any(pixel_probabilities < 0):
            raise ConfigurationError("Prior probability images must be finite and non-negative")
        origin = "images"
        probabilities = mean_pixel_priors(pixel_probabilities[mask], probabilities)

    if logger:
        logger.info(f"Prior probabilities ({origin}): {np.round(probabilities, 4).tolist()}")

    return PriorModel(
        probabilities=probabilities,
        pixel_probabilities=pixel_probabilities,
        origin=origin,
    )


def mean_pixel_priors(pixel_probabilities: np.ndarray, fallback: np.ndarray) -> np.ndarray:
    """
    Average class distribution of per-pixel priors.

    Each pixel's prior is normalised first, as the E-step does implicitly.
    Pixels whose priors are all zero are skipped; ``fallback`` is returned
    when no pixel remains.

    Args:
        pixel_probabilities: Per-pixel priors, shape (n, K)
        fallback: Global vector to use without usable pixels

    Returns:
        Prior vector of shape (K,), summing to 1
    """
    row_sums = pixel_probabilities.sum(axis=1)
    usable = row_sums > 0
    if not usable.any():
        return fallback
    normalized = pixel_probabilities[usable] / row_sums[usable, np.newaxis]
    return normalized.mean(axis=0)
