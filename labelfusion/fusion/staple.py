"""
Multi-label STAPLE.

Simultaneous truth and performance level estimation for discrete label images:
an EM loop estimates one confusion matrix per source together with a pixelwise
posterior over the true label, and a decision rule turns the converged
posterior into a consensus segmentation.

References:
    S. Warfield, K. Zou, W. Wells, "Validation of image segmentation and expert
    quality with an expectation-maximization algorithm", MICCAI 2002.

    T. Rohlfing, D. B. Russakoff, C. R. Maurer, "Performance-based classifier
    combination in atlas-based image segmentation using expectation-maximization
    parameter estimation", IEEE TMI 23:983-994, 2004.
"""

from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

import numpy as np

from labelfusion.fusion.config import STAPLEConfig
from labelfusion.fusion.confusion import ConfusionMatrixStore
from labelfusion.fusion.convergence import (
    CancellationToken,
    ConvergenceMonitor,
    IterationCallback,
    IterationEvent,
)
from labelfusion.fusion.decision import (
    assemble_label_image,
    assemble_probability_images,
    output_dtype,
    resolve_labels,
)
from labelfusion.fusion.label_space import check_shapes, discover_label_space, flatten_inputs
from labelfusion.fusion.majority_voting import majority_vote_labels
from labelfusion.fusion.posterior import PosteriorEstimator
from labelfusion.fusion.priors import build_prior_model
from labelfusion.fusion.reestimate import ConfusionReestimator


@dataclass
class STAPLEResult:
    """
    Outputs of one STAPLE run.

    Every array is a fresh copy owned by the caller. With prior images,
    ``prior_probabilities`` is their mean class distribution over the mask
    and ``prior_origin`` is "images".
    """

    labels: np.ndarray
    confusion_matrices: List[np.ndarray]
    prior_probabilities: np.ndarray
    number_of_classes: int
    undecided_label: int
    elapsed_iterations: int
    max_update: float
    converged: bool
    termination_reason: str
    update_history: List[float] = field(default_factory=list)
    prior_origin: str = "estimated"
    probabilities: Optional[np.ndarray] = None

    def confusion_matrix(self, index: int) -> np.ndarray:
        """Confusion matrix of source ``index`` (rows: true, columns: observed)."""
        return self.confusion_matrices[index]

    def probability_image(self, label: int) -> np.ndarray:
        """Posterior probability image of class ``label``."""
        if self.probabilities is None:
            raise RuntimeError(
                "Probabilistic segmentations were not generated or have been released"
            )
        return self.probabilities[label]

    def release_probabilities(self) -> None:
        """Drop the probability images; labels and confusion matrices are kept."""
        self.probabilities = None


class MultiLabelSTAPLE:
    """
    Performance-weighted multi-label fusion by expectation-maximization.

    The estimator holds only its configuration; every call to ``run`` rebuilds
    the label space, priors and confusion matrices from the given inputs.
    """

    def __init__(
        self,
        config: Optional[STAPLEConfig] = None,
        logger: Optional[Any] = None,
    ):
        """
        Initialize the estimator.

        Args:
            config: Run configuration (defaults are used when omitted)
            logger: Logger instance
        """
        self.config = config or STAPLEConfig()
        self.logger = logger

    def run(
        self,
        segmentations: Sequence[Any],
        mask: Optional[Any] = None,
        prior_images: Optional[Sequence[Any]] = None,
        callback: Optional[IterationCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> STAPLEResult:
        """
        Fuse segmentations into a consensus labelling.

        Args:
            segmentations: S label images of identical shape
            mask: Optional mask; only non-zero pixels are used for estimation
                and pixels outside it copy the label of source 0
            prior_images: Optional per-class prior probability images (K of them)
            callback: Called with an ``IterationEvent`` after every iteration
            cancel_token: Checked after every iteration; stops the loop early

        Returns:
            STAPLE result

        Raises:
            ConfigurationError: On invalid configuration or inputs
        """
        config = self.config

        sources, flat_mask, shape = flatten_inputs(segmentations, mask)
        if prior_images is not None:
            check_shapes([np.asarray(segmentations[0])], prior_images=prior_images)

        label_space = discover_label_space(
            sources,
            number_of_classes=config.number_of_classes,
            undecided_label=config.undecided_label,
            logger=self.logger,
        )
        k = label_space.number_of_classes
        config.validate_for_inputs(len(sources), k)

        priors = build_prior_model(
            sources,
            flat_mask,
            k,
            prior_probabilities=config.prior_probabilities,
            prior_images=prior_images,
            floor=config.prior_floor,
            logger=self.logger,
        )

        pixel_indices = np.flatnonzero(flat_mask)
        labels = np.stack([source[flat_mask] for source in sources]).astype(np.intp)

        preference = config.prior_preference
        store = ConfusionMatrixStore(len(sources), k)
        if config.initialize_with_majority_voting:
            voted = majority_vote_labels(list(labels), k, preference=preference)
            store.initialize_from_voting(list(labels), voted)
        else:
            store.initialize_identity(config.identity_diagonal)

        if self.logger:
            init = "majority voting" if config.initialize_with_majority_voting else "identity"
            self.logger.info(
                f"STAPLE: {len(sources)} sources, {pixel_indices.size} pixels in mask, "
                f"{init} initialization"
            )
            if config.max_iterations is None:
                self.logger.warning(
                    "No maximum number of iterations set; termination relies on the "
                    f"update threshold {config.termination_threshold:g} only"
                )

        monitor = ConvergenceMonitor(
            threshold=config.termination_threshold,
            max_iterations=config.max_iterations,
        )

        pool = (
            ThreadPoolExecutor(max_workers=config.num_workers, thread_name_prefix="staple")
            if config.num_workers > 1
            else nullcontext()
        )
        with pool as executor:
            e_step = PosteriorEstimator(
                labels,
                pixel_indices,
                priors,
                trust=config.observer_trust,
                chunk_size=config.chunk_size,
                executor=executor,
            )
            m_step = ConfusionReestimator(
                labels, k, chunk_size=config.chunk_size, executor=executor
            )

            while True:
                posterior = e_step.estimate(store.matrices)
                max_update = store.replace(m_step.estimate(posterior))
                monitor.update(max_update)

                if self.logger:
                    self.logger.debug(
                        f"Iteration {monitor.iterations}: max update {max_update:.3e}"
                    )
                if callback is not None:
                    callback(IterationEvent(monitor.iterations, max_update))

                if monitor.should_stop(cancel_token):
                    break

            # Posterior consistent with the final confusion matrices
            posterior = e_step.estimate(store.matrices)

        if self.logger:
            self.logger.info(
                f"STAPLE stopped ({monitor.reason}) after {monitor.iterations} iterations, "
                f"max update {monitor.max_update:.3e}"
            )

        decided = resolve_labels(
            posterior,
            preference=preference,
            undecided_label=label_space.undecided_label,
            tie_policy=config.tie_policy,
            tolerance=config.tie_tolerance,
        )
        dtype = output_dtype(
            np.asarray(segmentations[0]).dtype,
            max(label_space.undecided_label, k - 1),
        )
        label_image = assemble_label_image(decided, flat_mask, sources[0], shape, dtype)

        probabilities = None
        if config.generate_probabilistic_segmentations:
            probabilities = assemble_probability_images(posterior, flat_mask, sources[0], shape)

        return STAPLEResult(
            labels=label_image,
            confusion_matrices=store.to_list(),
            prior_probabilities=priors.probabilities.copy(),
            number_of_classes=k,
            undecided_label=label_space.undecided_label,
            elapsed_iterations=monitor.iterations,
            max_update=monitor.max_update,
            converged=monitor.converged,
            termination_reason=monitor.reason,
            update_history=list(monitor.history),
            prior_origin=priors.origin,
            probabilities=probabilities,
        )


def staple(
    segmentations: Sequence[Any],
    mask: Optional[Any] = None,
    prior_images: Optional[Sequence[Any]] = None,
    config: Optional[STAPLEConfig] = None,
    logger: Optional[Any] = None,
    **kwargs,
) -> STAPLEResult:
    """
    Functional shortcut for ``MultiLabelSTAPLE(config).run(...)``.

    Keyword arguments not consumed by ``run`` (``callback``, ``cancel_token``)
    are treated as ``STAPLEConfig`` fields when no config is given.
    """
    run_kwargs = {key: kwargs.pop(key) for key in ("callback", "cancel_token") if key in kwargs}
    if config is None:
        config = STAPLEConfig(**kwargs)
    elif kwargs:
        raise TypeError(f"Unexpected arguments with an explicit config: {sorted(kwargs)}")
    return MultiLabelSTAPLE(config, logger=logger).run(
        segmentations, mask=mask, prior_images=prior_images, **run_kwargs
    )
