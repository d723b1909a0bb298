"""
Report generation for fusion runs.

Summarises the estimated performance of every source (the diagonal of its
confusion matrix) together with the run statistics and, when a reference is
available, the evaluation metrics of the consensus.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from labelfusion.utils.io import save_json


def performance_table(
    confusion_matrices: Sequence[np.ndarray],
    prior_probabilities: Optional[Sequence[float]] = None,
    source_names: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Per-source, per-class sensitivity table.

    Args:
        confusion_matrices: K x K matrices, rows = true label
        prior_probabilities: Class priors used to weight the overall accuracy
        source_names: Display names of the sources

    Returns:
        DataFrame with columns source, class, sensitivity, prior
    """
    rows = []
    for s, matrix in enumerate(confusion_matrices):
        matrix = np.asarray(matrix)
        k = matrix.shape[0]
        priors = (
            np.asarray(prior_probabilities, dtype=np.float64)
            if prior_probabilities is not None
            else np.full(k, 1.0 / k)
        )
        name = source_names[s] if source_names is not None else f"source_{s}"
        for c in range(k):
            rows.append({
                "source": name,
                "class": c,
                "sensitivity": float(matrix[c, c]),
                "prior": float(priors[c]),
            })

    return pd.DataFrame(rows, columns=["source", "class", "sensitivity", "prior"])


def source_summary(table: pd.DataFrame) -> pd.DataFrame:
    """
    Collapse a performance table to one row per source.

    The overall accuracy is the prior-weighted mean sensitivity.
    """
    weighted = table.assign(weighted=table["sensitivity"] * table["prior"])
    summary = weighted.groupby("source", sort=False).agg(
        mean_sensitivity=("sensitivity", "mean"),
        min_sensitivity=("sensitivity", "min"),
        weighted_accuracy=("weighted", "sum"),
        prior_total=("prior", "sum"),
    )
    summary["weighted_accuracy"] = summary["weighted_accuracy"] / summary["prior_total"]
    return summary.drop(columns="prior_total").reset_index()


class ReportGenerator:
    """
    Generate fusion reports in various formats.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize report generator.

        Args:
            config: Configuration dictionary
        """
        self.config = config or {}

    def generate(
        self,
        results: Dict[str, Any],
        output_path: Union[str, Path],
        formats: Sequence[str] = ("csv", "json", "markdown"),
    ) -> List[str]:
        """
        Generate reports from fusion results.

        Args:
            results: Dictionary with ``fusion`` statistics, ``confusion_matrices``,
                ``prior_probabilities``, optional ``sources`` and ``evaluation``
            output_path: Output directory
            formats: Any of 'csv', 'json', 'markdown'

        Returns:
            Paths of generated files
        """
        output_path = Path(output_path)
        output_path.mkdir(parents=True, exist_ok=True)

        table = performance_table(
            results["confusion_matrices"],
            results.get("prior_probabilities"),
            results.get("sources"),
        )

        written = []
        for fmt in formats:
            if fmt == "csv":
                written.extend(self._generate_csv(table, output_path))
            elif fmt == "json":
                written.append(self._generate_json(results, output_path))
            elif fmt == "markdown":
                written.append(self._generate_markdown(results, table, output_path))
            else:
                raise ValueError(f"Unsupported format: {fmt}")

        return written

    def _generate_csv(self, table: pd.DataFrame, output_path: Path) -> List[str]:
        """Write the per-class table and the per-source summary."""
        table_path = output_path / "source_performance.csv"
        summary_path = output_path / "source_summary.csv"
        table.to_csv(table_path, index=False)
        source_summary(table).to_csv(summary_path, index=False)
        return [str(table_path), str(summary_path)]

    def _generate_json(self, results: Dict[str, Any], output_path: Path) -> str:
        """Write the raw results."""
        report_path = output_path / "fusion_report.json"
        save_json(results, report_path)
        return str(report_path)

    def _generate_markdown(
        self,
        results: Dict[str, Any],
        table: pd.DataFrame,
        output_path: Path,
    ) -> str:
        """Generate Markdown report."""
        md_content = "# Label Fusion Report\n\n"

        fusion = results.get("fusion", {})
        if fusion:
            md_content += "## Run\n\n"
            for key, value in fusion.items():
                if isinstance(value, float):
                    md_content += f"- **{key}**: {value:.4g}\n"
                else:
                    md_content += f"- **{key}**: {value}\n"
            md_content += "\n"

        md_content += "## Source Performance\n\n"
        md_content += "| Source | Mean sensitivity | Min sensitivity | Weighted accuracy |\n"
        md_content += "|--------|------------------|-----------------|-------------------|\n"
        for row in source_summary(table).itertuples(index=False):
            md_content += f"| {row.source} "
            md_content += f"| {row.mean_sensitivity:.4f} "
            md_content += f"| {row.min_sensitivity:.4f} "
            md_content += f"| {row.weighted_accuracy:.4f} |\n"
        md_content += "\n"

        evaluation = results.get("evaluation")
        if evaluation:
            md_content += "## Evaluation Against Reference\n\n"
            for key, value in evaluation.items():
                if isinstance(value, float):
                    md_content += f"- **{key}**: {value:.4f}\n"
                elif np.isscalar(value):
                    md_content += f"- **{key}**: {value}\n"
            md_content += "\n"

        image_files = ["convergence.png", "confusion_matrices.png"]
        images = [name for name in image_files if (output_path / name).exists()]
        if images:
            md_content += "## Visualizations\n\n"
            for img_name in images:
                md_content += f"![{img_name}]({img_name})\n\n"

        report_path = output_path / "fusion_report.md"
        with open(report_path, "w", encoding="utf-8") as f:
            f.write(md_content)

        return str(report_path)
