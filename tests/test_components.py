"""
Tests for the building blocks of the fusion engine.
"""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from labelfusion.fusion import ConfigurationError, STAPLEConfig
from labelfusion.fusion.config import validate_preference
from labelfusion.fusion.confusion import ConfusionMatrixStore, identity_like, normalize_rows
from labelfusion.fusion.convergence import CancellationToken, ConvergenceMonitor
from labelfusion.fusion.decision import (
    assemble_label_image,
    assemble_probability_images,
    output_dtype,
    resolve_labels,
)
from labelfusion.fusion.label_space import discover_label_space, flatten_inputs
from labelfusion.fusion.parallel import map_blocks, pixel_blocks
from labelfusion.fusion.posterior import PosteriorEstimator, posterior_block
from labelfusion.fusion.priors import PriorModel, build_prior_model, estimate_prior_probabilities
from labelfusion.fusion.reestimate import ConfusionReestimator, accumulate_counts


def random_matrices(rng, sources, classes):
    return normalize_rows(rng.random((sources, classes, classes)) + 0.01)


class TestConfig:
    def test_defaults(self):
        config = STAPLEConfig()

        assert config.termination_threshold == 1e-5
        assert config.max_iterations is None
        assert config.tie_policy == "preference"

    def test_sequences_become_tuples(self):
        config = STAPLEConfig(prior_probabilities=[0.25, 0.75], prior_preference=np.array([1, 0]))

        assert config.prior_probabilities == (0.25, 0.75)
        assert config.prior_preference == (1, 0)
        hash(config)

    @pytest.mark.parametrize("kwargs", [
        {"termination_threshold": -1.0},
        {"max_iterations": 0},
        {"number_of_classes": 0},
        {"undecided_label": -3},
        {"tie_policy": "random"},
        {"prior_probabilities": [0.5, 0.6]},
        {"prior_probabilities": [-0.5, 1.5]},
        {"observer_trust": [1.0, -1.0]},
        {"prior_preference": [0, 0, 1]},
        {"prior_preference": [0, 3]},
        {"num_workers": 0},
        {"chunk_size": 0},
        {"identity_diagonal": 0.0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ConfigurationError):
            STAPLEConfig(**kwargs)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            STAPLEConfig(max_iterations=-1)

    def test_from_dict_ignores_method(self):
        config = STAPLEConfig.from_dict({"method": "staple", "max_iterations": 7})

        assert config.max_iterations == 7

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ConfigurationError, match="iterations_max"):
            STAPLEConfig.from_dict({"iterations_max": 7})

    def test_dict_round_trip(self):
        config = STAPLEConfig(observer_trust=[1.0, 0.5], max_iterations=3)

        assert STAPLEConfig.from_dict(config.to_dict()) == config
        assert config.to_dict()["observer_trust"] == [1.0, 0.5]


class TestLabelSpace:
    def test_discovered_from_max_label(self):
        sources = [np.array([0, 1, 4]), np.array([2, 2, 0])]

        space = discover_label_space(sources)

        assert space.number_of_classes == 5
        assert space.undecided_label == 5
        assert space.max_observed_label == 4

    def test_explicit_undecided_label_kept(self):
        space = discover_label_space([np.array([0, 1])], undecided_label=255)

        assert space.undecided_label == 255

    def test_flatten_bool_sources(self):
        sources, mask, shape = flatten_inputs([np.eye(3, dtype=bool)] * 2)

        assert shape == (3, 3)
        assert sources[0].dtype == np.int64
        assert mask.all()


class TestPriors:
    def test_frequencies_count_every_pixel(self):
        sources = [np.array([0, 0, 1, 1]), np.array([0, 1, 1, 1])]

        priors = estimate_prior_probabilities(sources, 2)

        np.testing.assert_allclose(priors, [0.375, 0.625])

    def test_masked_pixels_count_towards_estimated_priors(self):
        sources = [np.array([0, 0, 1, 1, 1, 1])] * 2
        mask = np.array([True, True, True, False, False, False])

        model = build_prior_model(sources, mask, 2)

        assert model.origin == "estimated"
        np.testing.assert_allclose(model.probabilities, [1 / 3, 2 / 3])

    def test_unseen_class_floored(self):
        priors = estimate_prior_probabilities([np.zeros(10, dtype=int)], 3, floor=1e-3)

        assert np.all(priors > 0)
        assert priors.sum() == pytest.approx(1.0)
        assert priors[0] > 0.99

    def test_prior_images_give_pixel_priors(self):
        sources = [np.array([0, 1, 1])]
        images = [np.array([1.0, 0.0, 0.5]), np.array([0.0, 1.0, 0.5])]

        model = build_prior_model(sources, np.ones(3, bool), 2, prior_images=images)

        assert model.origin == "images"
        assert model.pixel_probabilities.shape == (3, 2)
        np.testing.assert_allclose(model.probabilities, [0.5, 0.5])
        log_priors = model.log_priors(np.array([2]))
        np.testing.assert_allclose(np.exp(log_priors), [[0.5, 0.5]])

    def test_reported_priors_follow_images_inside_mask(self):
        sources = [np.array([0, 0, 1])]
        images = [np.array([0.1, 0.3, 0.0]), np.array([0.9, 0.7, 0.0])]

        model = build_prior_model(
            sources, np.array([True, True, False]), 2, prior_images=images
        )

        np.testing.assert_allclose(model.probabilities, [0.2, 0.8])

    def test_negative_prior_image_rejected(self):
        images = [np.array([-0.1, 1.0]), np.array([1.1, 0.0])]

        with pytest.raises(ConfigurationError):
            build_prior_model([np.array([0, 1])], np.ones(2, bool), 2, prior_images=images)


class TestConfusionStore:
    def test_normalize_rows_with_empty_row(self):
        counts = np.array([[[2.0, 2.0], [0.0, 0.0]]])

        normalized = normalize_rows(counts)

        np.testing.assert_allclose(normalized[0], [[0.5, 0.5], [0.5, 0.5]])

    def test_identity_like_rows(self):
        matrix = identity_like(4, 0.97)

        np.testing.assert_allclose(matrix.sum(axis=1), 1.0)
        np.testing.assert_allclose(np.diag(matrix), 0.97)
        assert identity_like(1).tolist() == [[1.0]]

    def test_initialize_from_voting(self):
        store = ConfusionMatrixStore(1, 2)
        source = np.array([0, 0, 1, 1])
        voted = np.array([0, 0, 0, 1])

        store.initialize_from_voting([source], voted)

        np.testing.assert_allclose(store.confusion_matrix(0), [[2 / 3, 1 / 3], [0.0, 1.0]])

    def test_replace_reports_max_change(self):
        store = ConfusionMatrixStore(2, 2)
        store.initialize_identity(0.9)
        updated = np.array([identity_like(2, 0.9), identity_like(2, 0.6)])

        assert store.replace(updated) == pytest.approx(0.3)
        np.testing.assert_allclose(store.confusion_matrix(1), identity_like(2, 0.6))

    def test_matrices_view_is_read_only(self):
        store = ConfusionMatrixStore(1, 2)

        with pytest.raises(ValueError):
            store.matrices[0, 0, 0] = 1.0

    def test_replace_rejects_wrong_shape(self):
        with pytest.raises(ValueError):
            ConfusionMatrixStore(2, 2).replace(np.zeros((1, 2, 2)))


class TestPosterior:
    def test_rows_sum_to_one(self, rng):
        labels = rng.integers(0, 4, size=(3, 500))
        matrices = random_matrices(rng, 3, 4)
        priors = PriorModel(probabilities=np.full(4, 0.25))

        posterior = PosteriorEstimator(labels, np.arange(500), priors).estimate(matrices)

        assert posterior.shape == (500, 4)
        np.testing.assert_allclose(posterior.sum(axis=1), 1.0)

    def test_no_underflow_with_many_sources(self):
        labels = np.zeros((400, 1), dtype=int)
        matrices = np.tile(identity_like(2, 0.6), (400, 1, 1))

        posterior = posterior_block(labels, np.log(matrices), np.log([[0.5, 0.5]]))

        assert np.all(np.isfinite(posterior))
        assert posterior[0, 0] == pytest.approx(1.0)

    def test_zero_probability_entries_stay_finite(self):
        labels = np.array([[0], [1]])
        matrices = np.array([np.eye(2), np.eye(2)])
        priors = PriorModel(probabilities=np.array([0.5, 0.5]))

        posterior = PosteriorEstimator(labels, np.arange(1), priors).estimate(matrices)

        assert np.all(np.isfinite(posterior))
        np.testing.assert_allclose(posterior.sum(axis=1), 1.0)

    def test_blocked_matches_single_block(self, rng):
        labels = rng.integers(0, 3, size=(4, 1000))
        matrices = random_matrices(rng, 4, 3)
        priors = PriorModel(probabilities=np.array([0.5, 0.3, 0.2]))
        indices = np.arange(1000)

        whole = PosteriorEstimator(labels, indices, priors).estimate(matrices)
        with ThreadPoolExecutor(max_workers=3) as executor:
            blocked = PosteriorEstimator(
                labels, indices, priors, chunk_size=64, executor=executor
            ).estimate(matrices)

        np.testing.assert_allclose(blocked, whole)


class TestReestimate:
    def test_counts_match_loop(self, rng):
        labels = rng.integers(0, 3, size=(2, 50))
        posterior = normalize_rows(rng.random((50, 3)))

        counts = accumulate_counts(labels, posterior, 3)

        expected = np.zeros((2, 3, 3))
        for s in range(2):
            for p in range(50):
                expected[s, :, labels[s, p]] += posterior[p]
        np.testing.assert_allclose(counts, expected)

    def test_rows_sum_to_one(self, rng):
        labels = rng.integers(0, 3, size=(3, 300))
        posterior = normalize_rows(rng.random((300, 4)))
        # Class 3 never receives any weight
        posterior[:, 3] = 0.0
        posterior = normalize_rows(posterior)

        matrices = ConfusionReestimator(labels, 4, chunk_size=50).estimate(posterior)

        np.testing.assert_allclose(matrices.sum(axis=2), 1.0)
        np.testing.assert_allclose(matrices[:, 3], 0.25)


class TestDecision:
    def test_exact_tie_prefers_lower_rank(self):
        scores = np.array([[0.5, 0.5]])

        assert resolve_labels(scores, preference=[0, 1]).tolist() == [0]
        assert resolve_labels(scores, preference=[1, 0]).tolist() == [1]

    def test_near_tie_within_tolerance(self):
        scores = np.array([[0.5 - 1e-12, 0.5 + 1e-12], [0.4, 0.6]])

        labels = resolve_labels(scores, tolerance=1e-9)

        assert labels.tolist() == [0, 1]

    def test_undecided_policy(self):
        scores = np.array([[0.5, 0.5, 0.0], [0.2, 0.3, 0.5]])

        labels = resolve_labels(scores, undecided_label=3, tie_policy="undecided")

        assert labels.tolist() == [3, 2]

    def test_undecided_policy_needs_label(self):
        with pytest.raises(ValueError):
            resolve_labels(np.array([[1.0, 1.0]]), tie_policy="undecided")

    def test_resolution_is_idempotent(self, rng):
        scores = normalize_rows(rng.random((100, 4)))
        labels = resolve_labels(scores)

        again = resolve_labels(np.eye(4)[labels])

        np.testing.assert_array_equal(again, labels)

    @pytest.mark.parametrize("dtype, largest, expected", [
        (np.uint8, 3, np.uint8),
        (np.uint8, 256, np.uint16),
        (np.int16, 5, np.int16),
        (np.float64, 4, np.int64),
    ])
    def test_output_dtype(self, dtype, largest, expected):
        assert output_dtype(np.dtype(dtype), largest) == np.dtype(expected)

    def test_assemble_keeps_first_source_outside_mask(self):
        mask = np.array([True, False, True])
        first = np.array([4, 5, 6])

        image = assemble_label_image(np.array([1, 2]), mask, first, (3,), np.int16)

        assert image.tolist() == [1, 5, 2]
        assert image.dtype == np.int16

    def test_probability_images_shape(self):
        mask = np.array([True, False])
        posterior = np.array([[0.25, 0.75]])

        images = assemble_probability_images(posterior, mask, np.array([0, 1]), (1, 2))

        assert images.shape == (2, 1, 2)
        np.testing.assert_allclose(images[:, 0, 0], [0.25, 0.75])
        np.testing.assert_allclose(images[:, 0, 1], [0.0, 1.0])


class TestConvergence:
    def test_threshold_stops(self):
        monitor = ConvergenceMonitor(threshold=1e-3)
        monitor.update(0.5)
        assert not monitor.should_stop()

        monitor.update(1e-4)
        assert monitor.should_stop()
        assert monitor.reason == "converged"
        assert monitor.history == [0.5, 1e-4]

    def test_cap_stops(self):
        monitor = ConvergenceMonitor(threshold=0.0, max_iterations=2)
        monitor.update(1.0)
        monitor.update(1.0)

        assert monitor.should_stop()
        assert monitor.reason == "max_iterations"
        assert not monitor.converged

    def test_token(self):
        token = CancellationToken()
        monitor = ConvergenceMonitor(threshold=0.0)
        monitor.update(1.0)

        assert not monitor.should_stop(token)
        token.cancel()
        assert token.cancelled
        assert monitor.should_stop(token)
        assert monitor.reason == "cancelled"


class TestParallel:
    def test_blocks_cover_range(self):
        blocks = pixel_blocks(10, 4)

        assert [(b.start, b.stop) for b in blocks] == [(0, 4), (4, 8), (8, 10)]
        assert pixel_blocks(0, 4) == []

    def test_results_in_block_order(self):
        blocks = pixel_blocks(100, 7)
        with ThreadPoolExecutor(max_workers=4) as executor:
            results = map_blocks(lambda block: block.start, blocks, executor)

        assert results == [b.start for b in blocks]


class TestPreferenceValidation:
    def test_valid_permutation(self):
        validate_preference([2, 0, 1], number_of_classes=3)

    @pytest.mark.parametrize("preference", [[0, 0], [0, 5], [-1, 0]])
    def test_malformed(self, preference):
        with pytest.raises(ConfigurationError):
            validate_preference(preference)

    def test_length_must_match_classes(self):
        with pytest.raises(ConfigurationError, match="3 classes"):
            validate_preference([1, 0], number_of_classes=3)
