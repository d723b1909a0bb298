"""
Pixelwise majority voting.

Used to warm-start the STAPLE confusion matrices and as a standalone fusion
method that ignores source performance.
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np

from labelfusion.fusion.config import validate_preference
from labelfusion.fusion.decision import assemble_label_image, output_dtype, resolve_labels
from labelfusion.fusion.label_space import discover_label_space, flatten_inputs


def vote_counts(sources: Sequence[np.ndarray], number_of_classes: int) -> np.ndarray:
    """
    Count the votes for every class at every pixel.

    Args:
        sources: Flat integer label arrays of equal length
        number_of_classes: K

    Returns:
        Counts of shape (n, K)
    """
    n = sources[0].size
    counts = np.zeros((n, number_of_classes), dtype=np.int32)
    rows = np.arange(n)
    for source in sources:
        counts[rows, source] += 1
    return counts


def majority_vote_labels(
    sources: Sequence[np.ndarray],
    number_of_classes: int,
    preference: Optional[Sequence[int]] = None,
    undecided_label: Optional[int] = None,
    tie_policy: str = "preference",
) -> np.ndarray:
    """
    Majority vote over flat label arrays.

    Returns:
        Voted labels of shape (n,)
    """
    counts = vote_counts(sources, number_of_classes)
    return resolve_labels(
        counts,
        preference=preference,
        undecided_label=undecided_label,
        tie_policy=tie_policy,
    )


@dataclass
class VotingResult:
    """Output of a standalone majority vote."""

    labels: np.ndarray
    number_of_classes: int
    undecided_label: int


def majority_voting(
    segmentations: Sequence[Any],
    mask: Optional[Any] = None,
    number_of_classes: Optional[int] = None,
    undecided_label: Optional[int] = None,
    prior_preference: Optional[Sequence[int]] = None,
    tie_policy: str = "undecided",
    logger: Optional[Any] = None,
) -> VotingResult:
    """
    Fuse segmentations by unweighted majority vote.

    Args:
        segmentations: S label images of identical shape
        mask: Optional mask; pixels outside copy source 0
        number_of_classes: Declared K (optional)
        undecided_label: Label for ties (optional)
        prior_preference: Tie-break rank per class (optional)
        tie_policy: "undecided" (default) or "preference"
        logger: Logger instance

    Returns:
        Voting result with the consensus label image
    """
    sources, flat_mask, shape = flatten_inputs(segmentations, mask)
    label_space = discover_label_space(
        sources,
        number_of_classes=number_of_classes,
        undecided_label=undecided_label,
        logger=logger,
    )
    if prior_preference is not None:
        validate_preference(prior_preference, label_space.number_of_classes)

    voted = majority_vote_labels(
        [source[flat_mask] for source in sources],
        label_space.number_of_classes,
        preference=prior_preference,
        undecided_label=label_space.undecided_label,
        tie_policy=tie_policy,
    )

    dtype = output_dtype(
        np.asarray(segmentations[0]).dtype,
        max(label_space.undecided_label, label_space.number_of_classes - 1),
    )
    labels = assemble_label_image(voted, flat_mask, sources[0], shape, dtype)

    if logger:
        logger.info(f"Majority voting fused {len(sources)} segmentations of shape {shape}")

    return VotingResult(
        labels=labels,
        number_of_classes=label_space.number_of_classes,
        undecided_label=label_space.undecided_label,
    )


class MajorityVoting:
    """Majority voting with the same ``run`` interface as ``MultiLabelSTAPLE``."""

    def __init__(
        self,
        number_of_classes: Optional[int] = None,
        undecided_label: Optional[int] = None,
        prior_preference: Optional[Sequence[int]] = None,
        tie_policy: str = "undecided",
        logger: Optional[Any] = None,
    ):
        self.number_of_classes = number_of_classes
        self.undecided_label = undecided_label
        self.prior_preference = prior_preference
        self.tie_policy = tie_policy
        self.logger = logger

    def run(self, segmentations: Sequence[Any], mask: Optional[Any] = None, **kwargs) -> VotingResult:
        """Fuse ``segmentations``; extra keyword arguments are ignored."""
        return majority_voting(
            segmentations,
            mask=mask,
            number_of_classes=self.number_of_classes,
            undecided_label=self.undecided_label,
            prior_preference=self.prior_preference,
            tie_policy=self.tie_policy,
            logger=self.logger,
        )
