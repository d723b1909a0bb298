"""
Evaluation metrics comparing a fused segmentation with a reference.
"""

from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np
from scipy.ndimage import binary_erosion, distance_transform_edt


class DiceMetric:
    """
    Dice coefficient per class.
    """

    def __init__(
        self,
        num_classes: int,
        include_background: bool = False,
    ):
        """
        Initialize Dice metric.

        Args:
            num_classes: Number of segmentation classes
            include_background: Include class 0 in the mean
        """
        self.num_classes = num_classes
        self.include_background = include_background

        self.reset()

    def reset(self) -> None:
        """Reset metric state."""
        self.intersection = np.zeros(self.num_classes)
        self.union = np.zeros(self.num_classes)
        self.count = 0

    def update(self, pred: np.ndarray, target: np.ndarray) -> None:
        """
        Accumulate one prediction / reference pair.

        Labels outside [0, num_classes) (e.g. undecided) count as misses.

        Args:
            pred: Predicted label image
            target: Reference label image
        """
        pred = np.asarray(pred)
        target = np.asarray(target)

        for c in range(self.num_classes):
            pred_c = pred == c
            target_c = target == c

            self.intersection[c] += np.logical_and(pred_c, target_c).sum()
            self.union[c] += pred_c.sum() + target_c.sum()

        self.count += 1

    def compute(self) -> Dict[str, Any]:
        """
        Compute Dice scores.

        Returns:
            Dictionary with the mean Dice and Dice per class
        """
        smooth = 1e-5
        dice_per_class = (2.0 * self.intersection + smooth) / (self.union + smooth)

        start_idx = 0 if self.include_background else 1
        dice_foreground = dice_per_class[start_idx:]
        if dice_foreground.size == 0:
            dice_foreground = dice_per_class

        return {
            "dice": float(dice_foreground.mean()),
            "dice_per_class": dice_per_class.tolist(),
        }


class HausdorffDistance:
    """
    Percentile Hausdorff distance between foreground surfaces.
    """

    def __init__(self, percentile: float = 95):
        """
        Initialize Hausdorff distance.

        Args:
            percentile: Percentile for robust HD (e.g., 95%)
        """
        self.percentile = percentile
        self.distances = []

    def reset(self) -> None:
        """Reset metric state."""
        self.distances = []

    def update(
        self,
        pred: np.ndarray,
        target: np.ndarray,
        spacing: Optional[Sequence[float]] = None,
    ) -> None:
        """
        Accumulate the distance between the foregrounds (label > 0).

        Pairs where either foreground is empty are skipped.

        Args:
            pred: Predicted label image
            target: Reference label image
            spacing: Pixel spacing (optional)
        """
        pred_fg = np.asarray(pred) > 0
        target_fg = np.asarray(target) > 0

        if pred_fg.sum() == 0 or target_fg.sum() == 0:
            return

        spacing = spacing or (1.0,) * pred_fg.ndim

        dist_pred = distance_transform_edt(~pred_fg, sampling=spacing)
        dist_target = distance_transform_edt(~target_fg, sampling=spacing)

        border_pred = pred_fg & ~binary_erosion(pred_fg)
        border_target = target_fg & ~binary_erosion(target_fg)

        all_distances = np.concatenate([dist_target[border_pred], dist_pred[border_target]])

        if len(all_distances) > 0:
            self.distances.append(float(np.percentile(all_distances, self.percentile)))

    def compute(self) -> Dict[str, float]:
        """Compute Hausdorff distance."""
        if len(self.distances) == 0:
            return {"hausdorff_distance": float("inf")}

        return {
            "hausdorff_distance": float(np.mean(self.distances)),
            "hausdorff_distance_std": float(np.std(self.distances)),
        }


class ConfusionMatrix:
    """
    Confusion matrix of a prediction against a reference.

    Rows are reference labels, columns predicted labels. Predicted labels
    outside the class range (undecided) are counted in an extra last column.
    """

    def __init__(self, num_classes: int):
        """
        Initialize confusion matrix.

        Args:
            num_classes: Number of classes
        """
        self.num_classes = num_classes
        self.reset()

    def reset(self) -> None:
        """Reset confusion matrix."""
        self.matrix = np.zeros((self.num_classes, self.num_classes + 1), dtype=np.int64)

    def update(self, pred: np.ndarray, target: np.ndarray) -> None:
        """
        Update confusion matrix.

        Args:
            pred: Predicted label image
            target: Reference label image
        """
        pred = np.asarray(pred).astype(np.int64).ravel()
        target = np.asarray(target).astype(np.int64).ravel()

        valid = (target >= 0) & (target < self.num_classes)
        pred = pred[valid]
        target = target[valid]
        pred = np.where((pred >= 0) & (pred < self.num_classes), pred, self.num_classes)

        cols = self.num_classes + 1
        self.matrix += np.bincount(target * cols + pred, minlength=self.num_classes * cols).reshape(
            self.num_classes, cols
        )

    def compute(self) -> Dict[str, Any]:
        """
        Compute metrics from confusion matrix.

        Returns:
            Dictionary with precision, recall, accuracy, etc.
        """
        square = self.matrix[:, : self.num_classes]
        tp = np.diag(square)
        fp = square.sum(axis=0) - tp
        fn = self.matrix.sum(axis=1) - tp

        precision = tp / (tp + fp + 1e-8)
        recall = tp / (tp + fn + 1e-8)
        f1 = 2 * precision * recall / (precision + recall + 1e-8)

        accuracy = tp.sum() / (self.matrix.sum() + 1e-8)

        return {
            "accuracy": float(accuracy),
            "precision": float(precision.mean()),
            "recall": float(recall.mean()),
            "f1": float(f1.mean()),
            "undecided_fraction": float(self.matrix[:, -1].sum() / max(self.matrix.sum(), 1)),
            "precision_per_class": precision.tolist(),
            "recall_per_class": recall.tolist(),
            "f1_per_class": f1.tolist(),
            "confusion_matrix": self.matrix.tolist(),
        }


def evaluate_segmentation(
    pred: np.ndarray,
    target: np.ndarray,
    num_classes: int,
    spacing: Optional[Tuple[float, ...]] = None,
    percentile: float = 95,
) -> Dict[str, Any]:
    """
    Compare a segmentation with a reference using every metric.

    Args:
        pred: Predicted label image
        target: Reference label image
        num_classes: Number of classes
        spacing: Pixel spacing for the Hausdorff distance
        percentile: Hausdorff percentile

    Returns:
        Merged metric dictionary
    """
    if np.shape(pred) != np.shape(target):
        raise ValueError(f"Shape mismatch: {np.shape(pred)} vs {np.shape(target)}")

    dice = DiceMetric(num_classes=num_classes)
    hausdorff = HausdorffDistance(percentile=percentile)
    confusion = ConfusionMatrix(num_classes=num_classes)

    dice.update(pred, target)
    hausdorff.update(pred, target, spacing=spacing)
    confusion.update(pred, target)

    results = {}
    results.update(dice.compute())
    results.update(hausdorff.compute())
    results.update(confusion.compute())
    return results
