"""
Confusion re-estimator (M-step).

For every source s, true label k and observed label j:

    counts_s[k, j] = sum_p W_k(p) * [l_s(p) == j]

followed by row normalisation. Partial counts of disjoint pixel blocks are
summed before normalising.
"""

from concurrent.futures import Executor
from typing import Optional

import numpy as np

from labelfusion.fusion.confusion import normalize_rows
from labelfusion.fusion.parallel import map_blocks, pixel_blocks


def accumulate_counts(
    labels: np.ndarray,
    posterior: np.ndarray,
    number_of_classes: int,
) -> np.ndarray:
    """
    Expected (true, observed) counts for one block.

    Args:
        labels: Observed labels, shape (S, n)
        posterior: Posterior weights, shape (n, K)
        number_of_classes: K

    Returns:
        Counts of shape (S, K, K)
    """
    number_of_sources = labels.shape[0]
    counts = np.zeros((number_of_sources, number_of_classes, number_of_classes))
    for s in range(number_of_sources):
        for k in range(number_of_classes):
            counts[s, k] = np.bincount(
                labels[s], weights=posterior[:, k], minlength=number_of_classes
            )[:number_of_classes]
    return counts


class ConfusionReestimator:
    """M-step over all pixels inside the mask."""

    def __init__(
        self,
        labels: np.ndarray,
        number_of_classes: int,
        chunk_size: int = 262144,
        executor: Optional[Executor] = None,
    ):
        """
        Initialize the re-estimator.

        Args:
            labels: Observed labels inside the mask, shape (S, n)
            number_of_classes: K
            chunk_size: Pixels per block
            executor: Optional executor for parallel blocks
        """
        self.labels = labels
        self.number_of_classes = number_of_classes
        self.executor = executor
        self.blocks = pixel_blocks(labels.shape[1], chunk_size)

    def estimate(self, posterior: np.ndarray) -> np.ndarray:
        """
        Run one M-step.

        Args:
            posterior: Posterior weights, shape (n, K)

        Returns:
            New confusion matrices of shape (S, K, K), rows summing to 1
        """
        partials = map_blocks(
            lambda block: accumulate_counts(
                self.labels[:, block], posterior[block], self.number_of_classes
            ),
            self.blocks,
            self.executor,
        )
        counts = np.sum(partials, axis=0)
        return normalize_rows(counts)
