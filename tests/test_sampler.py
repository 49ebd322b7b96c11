"""Unit tests for next-token sampling."""

import numpy as np
import pytest

from ai_inference.engine.sampler import (
    GenerationConfig,
    apply_repetition_penalty,
    sample_token,
    softmax_with_temperature,
    top_k_filter,
    top_p_filter,
)


@pytest.fixture
def logits():
    return np.array([0.5, 2.0, -1.0, 1.5, 2.0, 0.0], dtype=np.float32)


class TestGreedy:

    def test_do_sample_false_is_argmax(self, logits):
        config = GenerationConfig(do_sample=False)
        # ties resolve to the lowest id
        assert sample_token(logits, config) == 1

    @pytest.mark.parametrize("temperature", [0.0, -1.0])
    def test_non_positive_temperature_is_greedy(self, logits, temperature):
        assert sample_token(logits, GenerationConfig(temperature=temperature)) == 1

    def test_greedy_is_deterministic(self, logits):
        config = GenerationConfig(do_sample=False)
        picks = {sample_token(logits, config, rng=np.random.default_rng(s)) for s in range(20)}
        assert picks == {1}

    def test_top_k_one_equals_greedy(self, logits):
        config = GenerationConfig(top_k=1, temperature=0.7)
        for seed in range(20):
            assert sample_token(logits, config, rng=np.random.default_rng(seed)) == 1


class TestRepetitionPenalty:

    def test_penalty_compounds_per_occurrence(self):
        out = apply_repetition_penalty(np.array([8.0, 8.0, 8.0]), [0, 0, 1], 2.0)
        np.testing.assert_array_equal(out, [2.0, 4.0, 8.0])

    def test_negative_logits_are_divided_too(self):
        out = apply_repetition_penalty(np.array([-4.0, 1.0]), [0], 2.0)
        np.testing.assert_array_equal(out, [-2.0, 1.0])

    def test_out_of_range_history_ignored(self):
        out = apply_repetition_penalty(np.array([1.0, 1.0]), [-1, 5], 3.0)
        np.testing.assert_array_equal(out, [1.0, 1.0])

    def test_input_not_mutated(self):
        logits = np.array([4.0, 4.0], dtype=np.float32)
        apply_repetition_penalty(logits, [0], 2.0)
        np.testing.assert_array_equal(logits, [4.0, 4.0])

    def test_changes_greedy_choice(self, logits):
        config = GenerationConfig(do_sample=False, repetition_penalty=4.0)
        # token 1 and 4 tie at 2.0; penalizing both leaves 3 on top
        assert sample_token(logits, config, history=[1, 4]) == 3


class TestFilters:

    def test_temperature_sharpens(self, logits):
        cold = softmax_with_temperature(logits, 0.1)
        warm = softmax_with_temperature(logits, 10.0)
        assert cold.max() > warm.max()
        np.testing.assert_allclose(cold.sum(), 1.0)
        np.testing.assert_allclose(warm.sum(), 1.0)

    def test_top_k_keeps_k_and_renormalizes(self):
        probs = np.array([0.1, 0.4, 0.2, 0.3])
        out = top_k_filter(probs, 2)
        np.testing.assert_allclose(out, [0.0, 4 / 7, 0.0, 3 / 7])

    def test_top_k_tie_prefers_lower_id(self):
        out = top_k_filter(np.array([0.25, 0.25, 0.25, 0.25]), 2)
        np.testing.assert_allclose(out, [0.5, 0.5, 0.0, 0.0])

    @pytest.mark.parametrize("k", [0, -3, 4, 10])
    def test_top_k_disabled(self, k):
        probs = np.array([0.1, 0.4, 0.2, 0.3])
        np.testing.assert_array_equal(top_k_filter(probs, k), probs)

    def test_top_p_smallest_prefix(self):
        probs = np.array([0.1, 0.4, 0.2, 0.3])
        # 0.4 + 0.3 = 0.7 >= 0.6
        np.testing.assert_allclose(top_p_filter(probs, 0.6), [0.0, 4 / 7, 0.0, 3 / 7])

    def test_top_p_tiny_keeps_top_token(self):
        probs = np.array([0.1, 0.4, 0.2, 0.3])
        np.testing.assert_allclose(top_p_filter(probs, 1e-6), [0.0, 1.0, 0.0, 0.0])

    def test_top_p_disabled(self):
        probs = np.array([0.1, 0.4, 0.2, 0.3])
        np.testing.assert_array_equal(top_p_filter(probs, 1.0), probs)


class TestSampling:

    def test_seed_reproducible(self, logits):
        config = GenerationConfig(seed=123)
        a = [sample_token(logits, config) for _ in range(5)]
        b = [sample_token(logits, config) for _ in range(5)]
        assert a == b

    def test_shared_rng_sequence_reproducible(self, logits):
        config = GenerationConfig()
        rng_a, rng_b = np.random.default_rng(9), np.random.default_rng(9)
        a = [sample_token(logits, config, rng=rng_a) for _ in range(30)]
        b = [sample_token(logits, config, rng=rng_b) for _ in range(30)]
        assert a == b

    def test_samples_stay_inside_nucleus(self, logits):
        config = GenerationConfig(top_p=0.5)
        rng = np.random.default_rng(0)
        picks = {sample_token(logits, config, rng=rng) for _ in range(200)}
        assert picks <= {1, 4}

    def test_samples_cover_distribution(self, logits):
        config = GenerationConfig(temperature=5.0)
        rng = np.random.default_rng(0)
        picks = {sample_token(logits, config, rng=rng) for _ in range(500)}
        assert picks == set(range(6))


class TestNonFiniteLogits:

    def test_positive_infinity_is_certain(self):
        logits = np.array([0.0, np.inf, 3.0], dtype=np.float32)
        for seed in range(5):
            assert sample_token(logits, GenerationConfig(temperature=0.7, seed=seed)) == 1

    def test_several_positive_infinities_share_mass(self):
        probs = softmax_with_temperature(np.array([np.inf, 1.0, np.inf]), 1.0)
        np.testing.assert_array_equal(probs, [0.5, 0.0, 0.5])

    def test_negative_infinity_never_drawn(self):
        logits = np.array([-np.inf, 0.0, -np.inf, 0.0], dtype=np.float32)
        rng = np.random.default_rng(3)
        config = GenerationConfig(temperature=1.0)
        drawn = {sample_token(logits, config, rng=rng) for _ in range(50)}
        assert drawn <= {1, 3}

    def test_all_negative_infinity_is_uniform(self):
        probs = softmax_with_temperature(np.full(4, -np.inf), 1.0)
        np.testing.assert_allclose(probs, 0.25)

    def test_nan_rejected(self):
        logits = np.array([0.0, np.nan, 1.0], dtype=np.float32)
        with pytest.raises(ValueError, match="NaN"):
            sample_token(logits, GenerationConfig(seed=0))
