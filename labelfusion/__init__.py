"""
Label fusion for discrete segmentations.

Combines several segmentations of the same scene into a consensus labelling
while estimating how reliable each source is (multi-label STAPLE), with
majority voting, evaluation and reporting around it.
"""

from labelfusion.fusion import (
    CancellationToken,
    ConfigurationError,
    LabelOutOfRangeError,
    MultiLabelSTAPLE,
    STAPLEConfig,
    STAPLEResult,
    majority_voting,
    staple,
)

__version__ = "0.1.0"

__all__ = [
    "CancellationToken",
    "ConfigurationError",
    "LabelOutOfRangeError",
    "MultiLabelSTAPLE",
    "STAPLEConfig",
    "STAPLEResult",
    "majority_voting",
    "staple",
]
