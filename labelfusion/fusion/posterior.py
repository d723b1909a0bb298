"""
Posterior estimator (E-step).

For every pixel inside the mask, computes the distribution over the K possible
true labels given the current confusion matrices and priors:

    W_k(p) ~ prior(k, p) * prod_s C_s[k, l_s(p)] ** trust(s)

The product is evaluated in log space and normalised with log-sum-exp, so each
row of the result sums to one even when the raw product underflows.
"""

from concurrent.futures import Executor
from typing import Optional, Sequence

import numpy as np

from labelfusion.fusion.parallel import map_blocks, pixel_blocks
from labelfusion.fusion.priors import PROBABILITY_FLOOR, PriorModel


def log_likelihood_tables(
    matrices: np.ndarray,
    trust: Optional[Sequence[float]] = None,
) -> np.ndarray:
    """
    Trust-weighted log confusion matrices.

    Args:
        matrices: Confusion matrices, shape (S, K, K)
        trust: Per-source exponent (default 1 for every source)

    Returns:
        Array of shape (S, K, K)
    """
    tables = np.log(np.maximum(matrices, PROBABILITY_FLOOR))
    if trust is not None:
        tables = tables * np.asarray(trust, dtype=np.float64)[:, np.newaxis, np.newaxis]
    return tables


def posterior_block(
    labels: np.ndarray,
    tables: np.ndarray,
    log_priors: np.ndarray,
) -> np.ndarray:
    """
    Posterior weights for one block of pixels.

    Args:
        labels: Observed labels, shape (S, n)
        tables: Output of ``log_likelihood_tables``
        log_priors: Log priors broadcastable to (n, K)

    Returns:
        Posterior weights of shape (n, K)
    """
    log_weights = np.broadcast_to(log_priors, (labels.shape[1], tables.shape[1])).copy()
    for s in range(labels.shape[0]):
        # tables[s][:, l] is the column of observed label l
        log_weights += tables[s][:, labels[s]].T

    log_weights -= log_weights.max(axis=1, keepdims=True)
    weights = np.exp(log_weights)
    weights /= weights.sum(axis=1, keepdims=True)
    return weights


class PosteriorEstimator:
    """
    E-step over all pixels inside the mask.

    Confusion matrices and priors are read-only while a pass runs; each block
    writes only its own rows of the posterior array.
    """

    def __init__(
        self,
        labels: np.ndarray,
        pixel_indices: np.ndarray,
        priors: PriorModel,
        trust: Optional[Sequence[float]] = None,
        chunk_size: int = 262144,
        executor: Optional[Executor] = None,
    ):
        """
        Initialize the estimator.

        Args:
            labels: Observed labels inside the mask, shape (S, n)
            pixel_indices: Flat image index of every column of ``labels``
            priors: Prior model
            trust: Optional per-source trust
            chunk_size: Pixels per block
            executor: Optional executor for parallel blocks
        """
        self.labels = labels
        self.pixel_indices = pixel_indices
        self.priors = priors
        self.trust = trust
        self.executor = executor
        self.blocks = pixel_blocks(labels.shape[1], chunk_size)

    def estimate(self, matrices: np.ndarray) -> np.ndarray:
        """
        Run one E-step.

        Args:
            matrices: Current confusion matrices, shape (S, K, K)

        Returns:
            Posterior weights of shape (n, K)
        """
        tables = log_likelihood_tables(matrices, self.trust)
        posterior = np.empty((self.labels.shape[1], matrices.shape[1]), dtype=np.float64)

        def run(block: slice) -> None:
            posterior[block] = posterior_block(
                self.labels[:, block],
                tables,
                self.priors.log_priors(self.pixel_indices[block]),
            )

        map_blocks(run, self.blocks, self.executor)
        return posterior
