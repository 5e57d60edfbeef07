"""Tests for the NLMS adaptive filter core."""

import numpy as np
import pytest

from echoclean.core.errors import DivergenceError, ValidationError
from echoclean.features.codec.analysis import rms
from echoclean.features.filtering.nlms import NLMSFilter


class TestReset:
    def test_reset_allocates_zeroed_state(self):
        f = NLMSFilter(filter_length=256, step_size=0.1)

        assert f.coefficients.shape == (256,)
        assert f.history.shape == (256,)
        assert not f.coefficients.any()
        assert not f.history.any()

    def test_reset_clears_previous_adaptation(self):
        f = NLMSFilter(filter_length=128, step_size=0.1)
        f.process_block(np.sin(np.arange(500) * 0.1))
        assert f.coefficients.any()

        f.reset(128, 0.1)

        assert not f.coefficients.any()
        assert not f.history.any()
        assert f.samples_seen == 0

    @pytest.mark.parametrize("filter_length", [64, 127, 2049, 4096])
    def test_rejects_filter_length_out_of_range(self, filter_length):
        with pytest.raises(ValidationError):
            NLMSFilter(filter_length=filter_length, step_size=0.05)

    @pytest.mark.parametrize("step_size", [0.0, -0.01, 0.21, 1.0])
    def test_rejects_step_size_out_of_range(self, step_size):
        with pytest.raises(ValidationError):
            NLMSFilter(filter_length=128, step_size=step_size)

    def test_state_views_are_read_only(self):
        f = NLMSFilter(filter_length=128, step_size=0.05)
        with pytest.raises(ValueError):
            f.coefficients[0] = 1.0
        with pytest.raises(ValueError):
            f.history[0] = 1.0


class TestProcessSample:
    def test_first_sample_passes_through(self):
        """With no history, nothing is predicted and e == x."""
        f = NLMSFilter(filter_length=128, step_size=0.05)
        assert f.process_sample(0.25) == pytest.approx(0.25)
        # h was all zeros, so no coefficient moved
        assert not f.coefficients.any()

    def test_history_is_oldest_first(self):
        f = NLMSFilter(filter_length=128, step_size=0.05)
        for x in (0.1, 0.2, 0.3):
            f.process_sample(x)

        h = f.history
        np.testing.assert_allclose(h[-3:], [0.1, 0.2, 0.3])
        assert not h[:-3].any()

    def test_history_evicts_oldest_after_wraparound(self):
        f = NLMSFilter(filter_length=128, step_size=0.01)
        values = np.linspace(-0.5, 0.5, 300)
        for x in values:
            f.process_sample(x)

        np.testing.assert_array_equal(f.history, values[-128:])

    def test_matches_reference_update_rule(self):
        """Compare against a direct transcription of the NLMS equations."""
        length, mu, eps = 128, 0.1, 1e-6
        rng = np.random.default_rng(0)
        signal = rng.uniform(-0.5, 0.5, 400)

        f = NLMSFilter(filter_length=length, step_size=mu, epsilon=eps)
        w = np.zeros(length)
        padded = np.concatenate([np.zeros(length), signal])

        for n, x in enumerate(signal):
            h = padded[n:n + length]
            e_ref = np.clip(x - w @ h, -1.0, 1.0)
            w = w + mu / (h @ h + eps) * e_ref * h

            assert f.process_sample(x) == pytest.approx(e_ref, abs=1e-12)

        np.testing.assert_allclose(f.coefficients, w, atol=1e-12)

    def test_output_is_clamped(self):
        f = NLMSFilter(filter_length=128, step_size=0.05)
        assert f.process_sample(1.8) == 1.0
        f = NLMSFilter(filter_length=128, step_size=0.05)
        assert f.process_sample(-1.8) == -1.0


class TestProcessBlock:
    def test_output_length_matches_input(self):
        f = NLMSFilter(filter_length=128, step_size=0.05)
        for n in (0, 1, 127, 128, 1000):
            assert len(f.process_block(np.zeros(n))) == n

    def test_split_blocks_equal_single_block(self):
        """State carries across calls, so slicing the input changes nothing."""
        x = np.sin(np.arange(3000) * 0.05) * 0.8
        whole = NLMSFilter(filter_length=256, step_size=0.05).process_block(x)

        f = NLMSFilter(filter_length=256, step_size=0.05)
        pieces = [f.process_block(x[i:i + 700]) for i in range(0, len(x), 700)]

        np.testing.assert_array_equal(np.concatenate(pieces), whole)

    def test_silence_stays_silent(self):
        f = NLMSFilter(filter_length=512, step_size=0.2)
        out = f.process_block(np.zeros(5000))

        assert not out.any()
        assert not f.coefficients.any()

    def test_reduces_echo_rms(self, echo_samples):
        x = echo_samples(delay=80)
        f = NLMSFilter(filter_length=128, step_size=0.05)

        out = f.process_block(x)

        assert rms(out) < rms(x)


class TestDivergence:
    def test_high_energy_input_raises_before_output(self):
        f = NLMSFilter(filter_length=128, step_size=0.2)
        with pytest.raises(DivergenceError):
            f.process_sample(100.0)

    def test_state_untouched_by_failed_sample(self):
        f = NLMSFilter(filter_length=128, step_size=0.2)
        f.process_block(np.sin(np.arange(200) * 0.3) * 0.5)
        coefficients = f.coefficients.copy()
        history = f.history.copy()
        seen = f.samples_seen

        with pytest.raises(DivergenceError):
            f.process_sample(100.0)

        np.testing.assert_array_equal(f.coefficients, coefficients)
        np.testing.assert_array_equal(f.history, history)
        assert f.samples_seen == seen

    @pytest.mark.parametrize("value", [np.nan, np.inf, -np.inf])
    def test_non_finite_input_raises(self, value):
        f = NLMSFilter(filter_length=128, step_size=0.05)
        with pytest.raises(DivergenceError):
            f.process_sample(value)

    def test_block_stops_at_divergence(self):
        x = np.full(1000, 100.0)
        f = NLMSFilter(filter_length=128, step_size=0.2)
        with pytest.raises(DivergenceError):
            f.process_block(x)
        assert f.samples_seen == 0

    @pytest.mark.parametrize("filter_length, step_size", [(128, 0.2), (512, 0.2), (2048, 0.2), (512, 0.05)])
    def test_loud_onset_after_quiet_floor_stays_finite(self, filter_length, step_size):
        """A near-silent lead-in inflates the normalized step; the loud part must still process."""
        sample_rate = 16000
        rng = np.random.default_rng(7)
        t = np.arange(sample_rate) / sample_rate
        x = np.concatenate([
            3e-5 * rng.standard_normal(sample_rate),
            0.9 * np.sign(np.sin(2 * np.pi * 150 * t)),
        ])
        f = NLMSFilter(filter_length=filter_length, step_size=step_size)

        out = f.process_block(x)

        assert len(out) == len(x)
        assert np.all(np.isfinite(out))
        assert np.all(np.isfinite(f.coefficients))
        assert np.abs(out).max() <= 1.0

    def test_out_of_range_input_raises(self):
        f = NLMSFilter(filter_length=128, step_size=0.05, divergence_limit=8.0)
        f.process_sample(1.5)
        with pytest.raises(DivergenceError, match="amplitude limit"):
            f.process_sample(-9.0)
        assert f.samples_seen == 1
