"""
Synthetic data for benchmarking fusion methods.
"""

from labelfusion.data.synthetic import (
    SyntheticRaters,
    corrupt_labels,
    generate_raters,
    make_ground_truth,
)

__all__ = ["SyntheticRaters", "corrupt_labels", "generate_raters", "make_ground_truth"]
