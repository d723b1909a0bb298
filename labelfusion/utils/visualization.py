"""
Visualization utilities for fusion results.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import matplotlib.pyplot as plt
import numpy as np


class Visualizer:
    """Plots for convergence, confusion matrices and label slices."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize visualizer.

        Args:
            config: ``visualization`` section of the run configuration
        """
        self.config = config or {}
        self.figsize = tuple(self.config.get("figsize", (8, 5)))
        self.dpi = self.config.get("dpi", 100)

    def _finish(self, fig, save_path: Optional[Union[str, Path]], show: bool) -> None:
        if save_path:
            Path(save_path).parent.mkdir(parents=True, exist_ok=True)
            fig.savefig(save_path, bbox_inches="tight")

        if show:
            plt.show()
        else:
            plt.close(fig)

    def plot_convergence(
        self,
        history: Sequence[float],
        threshold: Optional[float] = None,
        save_path: Optional[Union[str, Path]] = None,
        show: bool = False,
    ) -> None:
        """
        Plot the maximum confusion matrix update per iteration.

        Args:
            history: Max update of every iteration
            threshold: Termination threshold, drawn as a horizontal line
            save_path: Path to save figure
            show: Whether to display figure
        """
        fig, ax = plt.subplots(figsize=self.figsize, dpi=self.dpi)
        iterations = np.arange(1, len(history) + 1)
        # Zero updates cannot be drawn on a log axis
        values = np.maximum(np.asarray(history, dtype=np.float64), 1e-16)
        ax.semilogy(iterations, values, marker="o")
        if threshold:
            ax.axhline(threshold, color="red", linestyle="--", label="threshold")
            ax.legend()
        ax.set_xlabel("Iteration")
        ax.set_ylabel("Max confusion matrix update")
        ax.set_title("EM convergence")
        ax.grid(True, which="both", alpha=0.3)

        self._finish(fig, save_path, show)

    def plot_confusion_matrices(
        self,
        matrices: Sequence[np.ndarray],
        names: Optional[List[str]] = None,
        save_path: Optional[Union[str, Path]] = None,
        show: bool = False,
    ) -> None:
        """
        Plot one heatmap per source confusion matrix.

        Args:
            matrices: K x K matrices (rows: true label, columns: observed)
            names: Source names
            save_path: Path to save figure
            show: Whether to display figure
        """
        n = len(matrices)
        fig, axes = plt.subplots(1, n, figsize=(4 * n, 4), dpi=self.dpi, squeeze=False)

        for i, (ax, matrix) in enumerate(zip(axes[0], matrices)):
            im = ax.imshow(matrix, vmin=0.0, vmax=1.0, cmap="viridis")
            ax.set_title(names[i] if names else f"Source {i}")
            ax.set_xlabel("Observed label")
            ax.set_ylabel("True label")
            if matrix.shape[0] <= 10:
                for r in range(matrix.shape[0]):
                    for c in range(matrix.shape[1]):
                        ax.text(c, r, f"{matrix[r, c]:.2f}", ha="center", va="center",
                                color="white" if matrix[r, c] < 0.5 else "black", fontsize=8)

        fig.colorbar(im, ax=axes[0].tolist(), shrink=0.8)
        self._finish(fig, save_path, show)

    def plot_label_slices(
        self,
        images: Dict[str, np.ndarray],
        slice_idx: Optional[int] = None,
        axis: int = 2,
        save_path: Optional[Union[str, Path]] = None,
        show: bool = False,
    ) -> None:
        """
        Plot label images side by side (middle slice for 3D volumes).

        Args:
            images: Dictionary of {name: label image}
            slice_idx: Slice index for 3D images (default: middle slice)
            axis: Axis to slice along
            save_path: Path to save figure
            show: Whether to display figure
        """
        n_images = len(images)
        fig, axes = plt.subplots(1, n_images, figsize=(4 * n_images, 4), dpi=self.dpi, squeeze=False)

        vmax = max(int(np.max(image)) for image in images.values())
        for ax, (name, image) in zip(axes[0], images.items()):
            if image.ndim == 3:
                index = image.shape[axis] // 2 if slice_idx is None else slice_idx
                image = np.take(image, index, axis=axis)
            ax.imshow(image.T, cmap="tab20", vmin=0, vmax=max(vmax, 1),
                      origin="lower", interpolation="nearest")
            ax.set_title(name)
            ax.axis("off")

        self._finish(fig, save_path, show)
