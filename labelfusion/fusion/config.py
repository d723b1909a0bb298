"""
Run configuration for multi-label STAPLE.

A single immutable object describes one fusion run. It is validated once on
construction; optional parameters use ``None`` for "not provided".
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from labelfusion.fusion.errors import ConfigurationError


TIE_POLICIES = ("preference", "undecided")

# Tolerance used when checking that user supplied priors sum to one
_PRIOR_SUM_TOLERANCE = 1e-3


def validate_preference(
    preference: Sequence[int],
    number_of_classes: Optional[int] = None,
) -> None:
    """
    Check a tie-break preference vector.

    Entries must be a permutation of 0..len-1 and, when ``number_of_classes``
    is given, there must be one entry per class.

    Raises:
        ConfigurationError: On duplicate, out-of-range or missing entries
    """
    preference = [int(p) for p in preference]
    if number_of_classes is not None and len(preference) != number_of_classes:
        raise ConfigurationError(
            f"prior_preference has {len(preference)} entries for {number_of_classes} classes"
        )
    if len(set(preference)) != len(preference):
        raise ConfigurationError(f"prior_preference has duplicate entries: {preference}")
    if any(p < 0 or p >= len(preference) for p in preference):
        raise ConfigurationError(
            f"prior_preference entries must lie in [0, {len(preference) - 1}]"
        )


def _as_tuple(values: Optional[Sequence[Any]], cast) -> Optional[Tuple[Any, ...]]:
    if values is None:
        return None
    if np.isscalar(values):
        raise ConfigurationError(f"Expected a sequence, got scalar {values!r}")
    return tuple(cast(v) for v in values)


@dataclass(frozen=True)
class STAPLEConfig:
    """
    Immutable configuration of one STAPLE run.

    Attributes:
        termination_threshold: Stop once no confusion matrix entry changes by
            this much or more in one iteration
        max_iterations: Optional iteration cap; without it only the threshold
            ends the loop and the caller is responsible for termination
        number_of_classes: Declared number of classes K (discovered if None)
        undecided_label: Output label for unresolved ties (derived if None)
        prior_probabilities: Global class priors, length K
        observer_trust: Per-source exponent applied to its likelihood term
        prior_preference: Per-class tie-break rank, lower wins
        initialize_with_majority_voting: Seed confusion matrices from a vote
        generate_probabilistic_segmentations: Keep the per-class posterior images
        tie_policy: "preference" resolves ties by prior preference,
            "undecided" writes the undecided label
        tie_tolerance: Absolute tolerance for posterior ties
        prior_floor: Minimum probability given to unseen classes when priors
            are estimated from label frequencies
        identity_diagonal: Diagonal mass of the identity-like initialization
        num_workers: Worker threads for the per-pixel stages
        chunk_size: Pixels per work block
    """

    termination_threshold: float = 1e-5
    max_iterations: Optional[int] = None
    number_of_classes: Optional[int] = None
    undecided_label: Optional[int] = None
    prior_probabilities: Optional[Tuple[float, ...]] = None
    observer_trust: Optional[Tuple[float, ...]] = None
    prior_preference: Optional[Tuple[int, ...]] = None
    initialize_with_majority_voting: bool = False
    generate_probabilistic_segmentations: bool = False
    tie_policy: str = "preference"
    tie_tolerance: float = 1e-9
    prior_floor: float = 1e-6
    identity_diagonal: float = 0.99
    num_workers: int = 1
    chunk_size: int = 262144

    def __post_init__(self):
        # Normalise sequences so the frozen instance is hashable and immutable
        object.__setattr__(self, "prior_probabilities", _as_tuple(self.prior_probabilities, float))
        object.__setattr__(self, "observer_trust", _as_tuple(self.observer_trust, float))
        object.__setattr__(self, "prior_preference", _as_tuple(self.prior_preference, int))
        self.validate()

    def validate(self) -> None:
        """
        Check values that do not depend on the input images.

        Raises:
            ConfigurationError: If any value is malformed
        """
        if not np.isfinite(self.termination_threshold) or self.termination_threshold < 0:
            raise ConfigurationError(
                f"termination_threshold must be >= 0, got {self.termination_threshold}"
            )
        if self.max_iterations is not None and self.max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {self.max_iterations}")
        if self.number_of_classes is not None and self.number_of_classes < 1:
            raise ConfigurationError(
                f"number_of_classes must be >= 1, got {self.number_of_classes}"
            )
        if self.undecided_label is not None and self.undecided_label < 0:
            raise ConfigurationError(f"undecided_label must be >= 0, got {self.undecided_label}")
        if self.tie_policy not in TIE_POLICIES:
            raise ConfigurationError(
                f"tie_policy must be one of {TIE_POLICIES}, got {self.tie_policy!r}"
            )
        if self.tie_tolerance < 0:
            raise ConfigurationError(f"tie_tolerance must be >= 0, got {self.tie_tolerance}")
        if not 0 < self.prior_floor < 1:
            raise ConfigurationError(f"prior_floor must be in (0, 1), got {self.prior_floor}")
        if not 0 < self.identity_diagonal <= 1:
            raise ConfigurationError(
                f"identity_diagonal must be in (0, 1], got {self.identity_diagonal}"
            )
        if self.num_workers < 1:
            raise ConfigurationError(f"num_workers must be >= 1, got {self.num_workers}")
        if self.chunk_size < 1:
            raise ConfigurationError(f"chunk_size must be >= 1, got {self.chunk_size}")

        if self.prior_probabilities is not None:
            priors = np.asarray(self.prior_probabilities, dtype=np.float64)
            if priors.size == 0 or np.any(priors < 0) or not np.all(np.isfinite(priors)):
                raise ConfigurationError("prior_probabilities must be finite and non-negative")
            if abs(priors.sum() - 1.0) > _PRIOR_SUM_TOLERANCE:
                raise ConfigurationError(
                    f"prior_probabilities must sum to 1, got {priors.sum():.6f}"
                )

        if self.observer_trust is not None:
            trust = np.asarray(self.observer_trust, dtype=np.float64)
            if np.any(trust < 0) or not np.all(np.isfinite(trust)):
                raise ConfigurationError("observer_trust must be finite and non-negative")

        if self.prior_preference is not None:
            validate_preference(self.prior_preference)

    def validate_for_inputs(self, number_of_sources: int, number_of_classes: int) -> None:
        """
        Check the length of per-source and per-class vectors.

        Args:
            number_of_sources: Number of input segmentations S
            number_of_classes: Resolved number of classes K

        Raises:
            ConfigurationError: On a length mismatch
        """
        if self.observer_trust is not None and len(self.observer_trust) != number_of_sources:
            raise ConfigurationError(
                f"observer_trust has {len(self.observer_trust)} entries "
                f"for {number_of_sources} sources"
            )
        if (
            self.prior_probabilities is not None
            and len(self.prior_probabilities) != number_of_classes
        ):
            raise ConfigurationError(
                f"prior_probabilities has {len(self.prior_probabilities)} entries "
                f"for {number_of_classes} classes"
            )
        if self.prior_preference is not None:
            validate_preference(self.prior_preference, number_of_classes)

    @classmethod
    def from_dict(cls, config: Optional[Dict[str, Any]]) -> "STAPLEConfig":
        """
        Build a configuration from the ``fusion`` section of a run config.

        The ``method`` key is ignored so the whole section can be passed.

        Args:
            config: Mapping of field names to values

        Returns:
            Validated configuration
        """
        config = dict(config or {})
        config.pop("method", None)

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(config) - known)
        if unknown:
            raise ConfigurationError(f"Unknown fusion configuration keys: {unknown}")

        return cls(**config)

    def to_dict(self) -> Dict[str, Any]:
        """Return a YAML-serialisable mapping of this configuration."""
        result = asdict(self)
        for key in ("prior_probabilities", "observer_trust", "prior_preference"):
            if result[key] is not None:
                result[key] = list(result[key])
        return result
