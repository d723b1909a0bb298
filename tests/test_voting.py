"""
Tests for majority voting and the fusion factory.
"""

import numpy as np
import pytest

from labelfusion.fusion import (
    FUSION_REGISTRY,
    ConfigurationError,
    MajorityVoting,
    MultiLabelSTAPLE,
    build_fusion,
    majority_voting,
)
from labelfusion.fusion.majority_voting import majority_vote_labels, vote_counts


class TestMajorityVoting:
    def test_vote_counts(self):
        sources = [np.array([0, 1, 2]), np.array([0, 2, 2]), np.array([1, 2, 2])]

        counts = vote_counts(sources, 3)

        assert counts.tolist() == [[2, 1, 0], [0, 1, 2], [0, 0, 3]]

    def test_majority_wins(self):
        sources = [np.array([0, 1, 2]), np.array([0, 2, 2]), np.array([1, 2, 2])]

        assert majority_vote_labels(sources, 3).tolist() == [0, 2, 2]

    def test_tie_is_undecided_by_default(self):
        sources = [np.array([[0, 1]]), np.array([[1, 1]])]

        result = majority_voting(sources)

        assert result.undecided_label == 2
        assert result.labels.tolist() == [[2, 1]]

    def test_tie_by_preference(self):
        sources = [np.array([0, 1]), np.array([1, 1])]

        result = majority_voting(sources, tie_policy="preference", prior_preference=[1, 0])

        assert result.labels.tolist() == [1, 1]

    def test_mask_copies_first_source(self):
        sources = [np.array([0, 1, 1]), np.array([1, 1, 0]), np.array([1, 1, 0])]

        result = majority_voting(sources, mask=np.array([1, 1, 0]))

        assert result.labels.tolist() == [1, 1, 1]

    def test_preference_length_checked(self):
        with pytest.raises(ConfigurationError):
            majority_voting([np.array([0, 1])] * 2, prior_preference=[0, 1, 2])

    @pytest.mark.parametrize("preference", [[0, 0], [0, 5]])
    def test_malformed_preference_rejected(self, preference):
        fuser = build_fusion({
            "fusion": {
                "method": "vote",
                "vote_tie_policy": "preference",
                "prior_preference": preference,
            }
        })

        with pytest.raises(ConfigurationError, match="prior_preference"):
            fuser.run([np.array([0, 1]), np.array([1, 0])])

    def test_agrees_with_staple_when_sources_agree(self, agreeing_sources):
        voted = MajorityVoting().run(agreeing_sources, callback=None)
        fused = MultiLabelSTAPLE().run(agreeing_sources)

        np.testing.assert_array_equal(voted.labels, fused.labels)


class TestBuildFusion:
    def test_registry_names(self):
        assert {"staple", "multistaple", "vote", "majority_voting"} <= set(FUSION_REGISTRY)

    def test_builds_staple_from_yaml_section(self):
        config = {"fusion": {"method": "staple", "max_iterations": 12, "vote_tie_policy": "undecided"}}

        fuser = build_fusion(config)

        assert isinstance(fuser, MultiLabelSTAPLE)
        assert fuser.config.max_iterations == 12

    def test_builds_vote(self):
        fuser = build_fusion({"fusion": {"method": "Vote", "vote_tie_policy": "preference"}})

        assert isinstance(fuser, MajorityVoting)
        assert fuser.tie_policy == "preference"

    def test_defaults_to_staple(self):
        assert isinstance(build_fusion({}), MultiLabelSTAPLE)

    def test_unknown_method(self):
        with pytest.raises(ConfigurationError, match="Unknown fusion method"):
            build_fusion({"fusion": {"method": "simple"}})

    def test_unknown_staple_key(self):
        with pytest.raises(ConfigurationError):
            build_fusion({"fusion": {"method": "staple", "iterations": 3}})
