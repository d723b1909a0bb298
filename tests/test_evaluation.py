"""
Tests for evaluation metrics, reports and synthetic raters.
"""

import json

import numpy as np
import pandas as pd
import pytest

from labelfusion.analysis import ReportGenerator, performance_table, source_summary
from labelfusion.data import corrupt_labels, generate_raters, make_ground_truth
from labelfusion.evaluation import ConfusionMatrix, DiceMetric, HausdorffDistance, evaluate_segmentation


class TestDice:
    def test_perfect_match(self):
        target = np.array([[0, 1], [2, 2]])
        metric = DiceMetric(num_classes=3)
        metric.update(target, target)

        result = metric.compute()

        assert result["dice"] == pytest.approx(1.0)
        assert len(result["dice_per_class"]) == 3

    def test_disjoint(self):
        metric = DiceMetric(num_classes=2)
        metric.update(np.array([1, 0]), np.array([0, 1]))

        assert metric.compute()["dice"] == pytest.approx(0.0, abs=1e-4)

    def test_reset(self):
        metric = DiceMetric(num_classes=2)
        metric.update(np.array([1]), np.array([1]))
        metric.reset()

        assert metric.count == 0
        assert metric.union.sum() == 0


class TestHausdorff:
    def test_shifted_square(self):
        target = np.zeros((20, 20), dtype=int)
        target[5:10, 5:10] = 1
        pred = np.roll(target, 2, axis=0)
        metric = HausdorffDistance(percentile=100)
        metric.update(pred, target)

        assert metric.compute()["hausdorff_distance"] == pytest.approx(2.0)

    def test_empty_foreground(self):
        metric = HausdorffDistance()
        metric.update(np.zeros((4, 4)), np.ones((4, 4)))

        assert metric.compute()["hausdorff_distance"] == float("inf")


class TestConfusionMatrix:
    def test_undecided_column(self):
        metric = ConfusionMatrix(num_classes=2)
        metric.update(np.array([0, 1, 2, 1]), np.array([0, 1, 1, 0]))

        result = metric.compute()

        assert result["confusion_matrix"] == [[1, 1, 0], [0, 1, 1]]
        assert result["accuracy"] == pytest.approx(0.5)
        assert result["undecided_fraction"] == pytest.approx(0.25)


class TestEvaluateSegmentation:
    def test_keys(self):
        target = np.zeros((8, 8), dtype=int)
        target[2:6, 2:6] = 1

        result = evaluate_segmentation(target, target, num_classes=2)

        assert result["dice"] == pytest.approx(1.0)
        assert result["accuracy"] == pytest.approx(1.0)
        assert result["hausdorff_distance"] == pytest.approx(0.0)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            evaluate_segmentation(np.zeros((2, 2)), np.zeros((3, 3)), num_classes=2)


class TestReport:
    @pytest.fixture
    def results(self):
        return {
            "sources": ["a.nii.gz", "b.nii.gz"],
            "fusion": {"method": "staple", "elapsed_iterations": 4, "max_update": 1e-6},
            "confusion_matrices": [
                [[0.9, 0.1], [0.2, 0.8]],
                [[0.6, 0.4], [0.3, 0.7]],
            ],
            "prior_probabilities": [0.75, 0.25],
            "evaluation": {"dice": 0.91, "dice_per_class": [0.99, 0.91]},
        }

    def test_performance_table(self, results):
        table = performance_table(
            results["confusion_matrices"], results["prior_probabilities"], results["sources"]
        )

        assert list(table.columns) == ["source", "class", "sensitivity", "prior"]
        assert len(table) == 4
        assert table.loc[table["source"] == "b.nii.gz", "sensitivity"].tolist() == [0.6, 0.7]

    def test_summary_weighted_accuracy(self, results):
        table = performance_table(results["confusion_matrices"], results["prior_probabilities"])

        summary = source_summary(table).set_index("source")

        assert summary.loc["source_0", "weighted_accuracy"] == pytest.approx(0.875)
        assert summary.loc["source_1", "min_sensitivity"] == pytest.approx(0.6)

    def test_generate_all_formats(self, results, tmp_path):
        written = ReportGenerator().generate(results, tmp_path)

        names = sorted(p.split("/")[-1] for p in written)
        assert names == [
            "fusion_report.json",
            "fusion_report.md",
            "source_performance.csv",
            "source_summary.csv",
        ]
        assert len(pd.read_csv(tmp_path / "source_performance.csv")) == 4
        with open(tmp_path / "fusion_report.json") as f:
            assert json.load(f)["fusion"]["elapsed_iterations"] == 4
        markdown = (tmp_path / "fusion_report.md").read_text()
        assert "| a.nii.gz |" in markdown
        assert "**dice**: 0.9100" in markdown

    def test_unsupported_format(self, results, tmp_path):
        with pytest.raises(ValueError):
            ReportGenerator().generate(results, tmp_path, formats=["html"])


class TestSyntheticRaters:
    def test_ground_truth_labels(self):
        truth = make_ground_truth((32, 32), 4, rng=np.random.default_rng(0))

        assert truth.shape == (32, 32)
        assert truth.min() >= 0 and truth.max() <= 3

    def test_corruption_rate(self):
        truth = np.zeros((200, 200), dtype=np.int16)

        noisy = corrupt_labels(truth, 0.7, 3, rng=np.random.default_rng(0))

        assert np.mean(noisy == truth) == pytest.approx(0.7, abs=0.02)
        assert noisy.max() <= 2

    def test_boundary_shift_grows_foreground(self):
        truth = np.zeros((20, 20), dtype=np.int16)
        truth[8:12, 8:12] = 1

        grown = corrupt_labels(truth, 1.0, 2, boundary_shift=2, rng=np.random.default_rng(0))

        assert (grown == 1).sum() > (truth == 1).sum()

    def test_generate_is_seeded(self):
        first = generate_raters(shape=(16, 16), seed=5)
        second = generate_raters(shape=(16, 16), seed=5)

        np.testing.assert_array_equal(first.segmentations[2], second.segmentations[2])
        assert first.accuracies == [0.95, 0.8, 0.6]

    def test_boundary_shift_length_checked(self):
        with pytest.raises(ValueError):
            generate_raters(accuracies=(0.9, 0.8), boundary_shifts=[1])
