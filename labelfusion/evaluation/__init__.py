"""
Metrics for comparing fused segmentations with a reference.
"""

from labelfusion.evaluation.metrics import (
    ConfusionMatrix,
    DiceMetric,
    HausdorffDistance,
    evaluate_segmentation,
)

__all__ = [
    "ConfusionMatrix",
    "DiceMetric",
    "HausdorffDistance",
    "evaluate_segmentation",
]
