"""
Label fusion engines: multi-label STAPLE and majority voting.
"""

from labelfusion.fusion.build import FUSION_REGISTRY, build_fusion
from labelfusion.fusion.config import STAPLEConfig
from labelfusion.fusion.convergence import CancellationToken, IterationEvent
from labelfusion.fusion.errors import (
    ConfigurationError,
    EmptyMaskError,
    ImageShapeMismatchError,
    LabelFusionError,
    LabelOutOfRangeError,
)
from labelfusion.fusion.majority_voting import MajorityVoting, VotingResult, majority_voting
from labelfusion.fusion.staple import MultiLabelSTAPLE, STAPLEResult, staple

__all__ = [
    "FUSION_REGISTRY",
    "build_fusion",
    "STAPLEConfig",
    "CancellationToken",
    "IterationEvent",
    "ConfigurationError",
    "EmptyMaskError",
    "ImageShapeMismatchError",
    "LabelFusionError",
    "LabelOutOfRangeError",
    "MajorityVoting",
    "VotingResult",
    "majority_voting",
    "MultiLabelSTAPLE",
    "STAPLEResult",
    "staple",
]
