"""
Confusion matrix store.

Holds one K x K matrix per source. Row i is the true label, column j the label
reported by the source, so every row is a probability distribution.
"""

from typing import List, Sequence

import numpy as np


def normalize_rows(counts: np.ndarray) -> np.ndarray:
    """
    Row-normalise a stack of count matrices.

    Rows without any mass become uniform so every row sums to one.

    Args:
        counts: Array of shape (..., K, K)

    Returns:
        Array of the same shape with rows summing to 1
    """
    counts = np.asarray(counts, dtype=np.float64)
    number_of_classes = counts.shape[-1]
    row_sums = counts.sum(axis=-1, keepdims=True)
    empty = row_sums <= 0
    safe_sums = np.where(empty, 1.0, row_sums)
    normalized = counts / safe_sums
    return np.where(empty, 1.0 / number_of_classes, normalized)


def identity_like(number_of_classes: int, diagonal: float = 0.99) -> np.ndarray:
    """Diagonal dominant matrix with the remaining mass spread over each row."""
    if number_of_classes == 1:
        return np.ones((1, 1), dtype=np.float64)
    off_diagonal = (1.0 - diagonal) / (number_of_classes - 1)
    matrix = np.full((number_of_classes, number_of_classes), off_diagonal, dtype=np.float64)
    np.fill_diagonal(matrix, diagonal)
    return matrix


class ConfusionMatrixStore:
    """
    Owner of the per-source confusion matrices of one run.

    Matrices are replaced wholesale by every M-step; callers only ever receive
    copies.
    """

    def __init__(self, number_of_sources: int, number_of_classes: int):
        """
        Initialize an empty store.

        Args:
            number_of_sources: S
            number_of_classes: K
        """
        self.number_of_sources = number_of_sources
        self.number_of_classes = number_of_classes
        self._matrices = np.zeros(
            (number_of_sources, number_of_classes, number_of_classes), dtype=np.float64
        )

    @property
    def matrices(self) -> np.ndarray:
        """Read-only view of the stacked matrices, shape (S, K, K)."""
        view = self._matrices.view()
        view.flags.writeable = False
        return view

    def initialize_identity(self, diagonal: float = 0.99) -> None:
        """Start every source from the same diagonal dominant matrix."""
        self._matrices[:] = identity_like(self.number_of_classes, diagonal)[np.newaxis]

    def initialize_from_voting(
        self,
        sources: Sequence[np.ndarray],
        voted: np.ndarray,
    ) -> None:
        """
        Start from the empirical joint distribution of (vote, source label).

        Args:
            sources: Flat labels of every source inside the mask
            voted: Majority vote labels for the same pixels
        """
        k = self.number_of_classes
        for s, source in enumerate(sources):
            joint = np.bincount(voted * k + source, minlength=k * k)[: k * k]
            self._matrices[s] = joint.reshape(k, k)
        self._matrices[:] = normalize_rows(self._matrices)

    def replace(self, updated: np.ndarray) -> float:
        """
        Replace all matrices and report the largest entry change.

        Args:
            updated: New matrices, shape (S, K, K)

        Returns:
            max |new - old| over every entry of every matrix
        """
        updated = np.asarray(updated, dtype=np.float64)
        if updated.shape != self._matrices.shape:
            raise ValueError(
                f"Expected matrices of shape {self._matrices.shape}, got {updated.shape}"
            )
        max_update = float(np.max(np.abs(updated - self._matrices)))
        self._matrices = updated.copy()
        return max_update

    def confusion_matrix(self, index: int) -> np.ndarray:
        """Copy of the matrix of source ``index``."""
        return self._matrices[index].copy()

    def to_list(self) -> List[np.ndarray]:
        """Independent copies of all matrices."""
        return [matrix.copy() for matrix in self._matrices]
