"""
Fusion method factory.
"""

from typing import Any, Dict, Optional

from labelfusion.fusion.config import TIE_POLICIES, STAPLEConfig
from labelfusion.fusion.errors import ConfigurationError
from labelfusion.fusion.majority_voting import MajorityVoting
from labelfusion.fusion.staple import MultiLabelSTAPLE


def build_staple(fusion_config: Dict[str, Any], logger: Optional[Any] = None) -> MultiLabelSTAPLE:
    """Build a STAPLE estimator from the ``fusion`` config section."""
    return MultiLabelSTAPLE(STAPLEConfig.from_dict(fusion_config), logger=logger)


def build_vote(fusion_config: Dict[str, Any], logger: Optional[Any] = None) -> MajorityVoting:
    """Build a majority voting fuser from the ``fusion`` config section."""
    tie_policy = fusion_config.get("vote_tie_policy", "undecided")
    if tie_policy not in TIE_POLICIES:
        raise ConfigurationError(f"vote_tie_policy must be one of {TIE_POLICIES}")

    return MajorityVoting(
        number_of_classes=fusion_config.get("number_of_classes"),
        undecided_label=fusion_config.get("undecided_label"),
        prior_preference=fusion_config.get("prior_preference"),
        tie_policy=tie_policy,
        logger=logger,
    )


# Fusion method registry
FUSION_REGISTRY = {
    "staple": build_staple,
    "multistaple": build_staple,
    "vote": build_vote,
    "majority_voting": build_vote,
}


def build_fusion(config: Dict[str, Any], logger: Optional[Any] = None):
    """
    Build the fusion method named in the configuration.

    Args:
        config: Run configuration dictionary with a ``fusion`` section

    Returns:
        Object with a ``run(segmentations, mask=None, prior_images=None)`` method
    """
    fusion_config = dict(config.get("fusion", {}) or {})
    method = str(fusion_config.pop("method", "staple")).lower()

    if method not in FUSION_REGISTRY:
        raise ConfigurationError(
            f"Unknown fusion method: {method}. Available: {list(FUSION_REGISTRY.keys())}"
        )

    if method in ("staple", "multistaple"):
        fusion_config.pop("vote_tie_policy", None)

    return FUSION_REGISTRY[method](fusion_config, logger=logger)
