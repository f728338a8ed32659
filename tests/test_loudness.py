"""
Loudness Meter Tests

Tests for the LUFS formula, relative gating and the streaming meter.
"""

import pytest
import numpy as np

from stereoscope import timebase
from stereoscope.loudness import LoudnessMeter, compute_gated_loudness, power_to_lufs
from stereoscope.params import LoudnessParams


SR = 8000
BLOCK = 1024


def sine_block(amplitude: float = 0.5, freq: float = 250.0, n: int = BLOCK, sr: int = SR) -> np.ndarray:
    """Sine with a whole number of periods per block (250 Hz at 8 kHz = 32 samples)."""
    t = np.arange(n) / sr
    return amplitude * np.sin(2 * np.pi * freq * t)


def feed(meter: LoudnessMeter, left: np.ndarray, right: np.ndarray, count: int):
    values = None
    for _ in range(count):
        values = meter.process(left, right, SR)
    return values


class TestLufsFormula:
    """Tests for power_to_lufs."""

    def test_unit_power(self):
        assert power_to_lufs(1.0) == pytest.approx(-0.691)

    def test_floor_for_silence_and_garbage(self):
        assert power_to_lufs(0.0) == -70.0
        assert power_to_lufs(-1.0) == -70.0
        assert power_to_lufs(float('nan')) == -70.0
        assert power_to_lufs(float('inf')) == -70.0

    def test_never_below_floor(self):
        assert power_to_lufs(1e-12) == -70.0


class TestGating:
    """Tests for compute_gated_loudness."""

    def test_quiet_blocks_are_removed(self):
        result = compute_gated_loudness(np.array([1.0, 1.0, 1.0, 1e-6]))
        assert list(result['gated_mask']) == [True, True, True, False]
        assert result['integrated'] == pytest.approx(-0.691)
        assert result['ungated'] == pytest.approx(-0.691 + 10 * np.log10(0.75))

    def test_gated_set_is_subset_and_mean_not_lower(self):
        """Gating only drops blocks below the gate, so the gated mean cannot fall below the ungated mean."""
        rng = np.random.default_rng(7)
        for _ in range(50):
            powers = rng.uniform(0.0, 1.0, 40) * rng.choice([1.0, 1e-3, 1e-5], 40)
            result = compute_gated_loudness(powers)
            mask = result['gated_mask']

            assert mask.shape == powers.shape
            assert np.all(powers[~mask] < result['gate_power'])
            assert np.all(powers[mask] >= result['gate_power'])
            assert result['gated_mean'] >= result['ungated_mean'] - 1e-15
            assert result['integrated'] >= result['ungated']

    def test_empty_and_silent(self):
        for powers in (np.array([]), np.zeros(10)):
            result = compute_gated_loudness(powers)
            assert result['integrated'] == -70.0
            assert result['ungated'] == -70.0
            assert not result['gated_mask'].any()


class TestLoudnessMeter:
    """Tests for the streaming meter."""

    def test_silence_yields_floor(self):
        meter = LoudnessMeter()
        zeros = np.zeros(BLOCK)
        values = feed(meter, zeros, zeros, 40)
        assert values.momentary == -70.0
        assert values.short_term == -70.0
        assert values.integrated == -70.0

    def test_integrated_needs_one_full_block(self):
        meter = LoudnessMeter()
        x = sine_block()
        values = meter.process(x, x, SR)
        # 1024 samples < 3200-sample gating block
        assert values.integrated == -70.0
        assert values.momentary > -70.0

    def test_steady_signal(self):
        """A steady sine reads the same on all three scales."""
        meter = LoudnessMeter()
        x = sine_block(0.5)
        values = feed(meter, x, x, 40)
        expected = -0.691 + 10 * np.log10(0.25)
        assert values.momentary == pytest.approx(expected, abs=1e-6)
        assert values.short_term == pytest.approx(expected, abs=1e-6)
        assert values.integrated == pytest.approx(expected, abs=1e-6)

    def test_windows_use_most_recent_samples(self):
        """After loud then quiet audio, momentary follows the quiet part first."""
        meter = LoudnessMeter()
        loud = sine_block(0.8)
        quiet = sine_block(0.05)
        feed(meter, loud, loud, 40)
        values = feed(meter, quiet, quiet, 4)
        # integrated gates out the quiet tail, short-term does not
        assert values.momentary < values.short_term < values.integrated

        quiet_level = -0.691 + 10 * np.log10(2 * 0.05 ** 2 / 2)
        assert values.momentary == pytest.approx(quiet_level, abs=1e-6)

    def test_idempotent_convergence(self):
        """Feeding the same block repeatedly converges display values to measured values."""
        meter = LoudnessMeter()
        x = sine_block(0.3)
        values = feed(meter, x, x, 400)
        display = meter.display_values()
        assert display.momentary == pytest.approx(values.momentary, abs=1e-3)
        assert display.short_term == pytest.approx(values.short_term, abs=1e-3)
        assert display.integrated == pytest.approx(values.integrated, abs=1e-3)

    def test_display_smoothing_does_not_feed_back(self):
        """Different display smoothing leaves measured loudness untouched."""
        fast = LoudnessMeter(LoudnessParams(momentary_smoothing=1.0, short_term_smoothing=1.0,
                                            integrated_smoothing=1.0))
        slow = LoudnessMeter(LoudnessParams(momentary_smoothing=0.01, short_term_smoothing=0.01,
                                            integrated_smoothing=0.01))
        rng = np.random.default_rng(3)
        for _ in range(60):
            x = rng.uniform(-0.5, 0.5, BLOCK) * rng.choice([1.0, 0.01])
            a = fast.process(x, x, SR)
            b = slow.process(x, x, SR)
            assert a == b
        assert fast.display_values() != slow.display_values()

    def test_display_ordering_of_smoothing(self):
        """Momentary display reacts fastest, integrated slowest."""
        meter = LoudnessMeter()
        x = sine_block(0.5)
        meter.process(x, x, SR)
        meter.process(x, x, SR)
        meter.process(x, x, SR)
        meter.process(x, x, SR)
        display = meter.display_values()
        assert display.momentary > display.short_term

    def test_reset(self):
        meter = LoudnessMeter()
        x = sine_block()
        feed(meter, x, x, 10)
        meter.reset()
        assert meter.values().integrated == -70.0
        assert meter.display_values().momentary == -70.0
        assert meter.state.history is None

    def test_history_is_bounded(self):
        meter = LoudnessMeter(LoudnessParams(integration_window_sec=4.0))
        x = sine_block()
        feed(meter, x, x, 100)
        assert len(meter.state.history) == 4 * SR

    def test_sample_rate_change_restarts_history(self):
        meter = LoudnessMeter()
        x = sine_block()
        feed(meter, x, x, 10)
        meter.process(x, x, 16000)
        assert len(meter.state.history) == BLOCK

    def test_non_finite_samples_do_not_poison_state(self):
        meter = LoudnessMeter()
        x = sine_block()
        bad = x.copy()
        bad[::7] = np.nan
        bad[3] = np.inf
        values = feed(meter, bad, bad, 10)
        assert np.isfinite(values.momentary)
        assert np.all(np.isfinite(meter.state.history.values()))

    def test_streamed_blocks_match_full_buffer(self):
        """Block powers kept incrementally equal a recomputation over the whole window."""
        meter = LoudnessMeter(LoudnessParams(integration_window_sec=4.0))
        rng = np.random.default_rng(5)
        stream = []
        for _ in range(70):
            x = rng.uniform(-0.5, 0.5, BLOCK) * rng.choice([1.0, 0.05, 0.0])
            stream.append(x ** 2 + x ** 2)
            meter.process(x, x, SR)

        window = np.concatenate(stream)[-4 * SR:]
        block_len = timebase.seconds_to_samples(0.4, SR)
        stride = timebase.gating_stride(block_len, 0.75)
        np.testing.assert_allclose(
            meter.block_powers(), timebase.block_mean_powers(window, block_len, stride),
            rtol=1e-9, atol=1e-15,
        )
        expected = compute_gated_loudness(timebase.block_mean_powers(window, block_len, stride))
        assert meter.values().integrated == pytest.approx(expected['integrated'], abs=1e-6)

    def test_overflowing_sample_counts_as_silence(self):
        meter = LoudnessMeter()
        x = sine_block()
        x[5] = 1e200
        with np.errstate(all='ignore'):
            values = meter.process(x, x, SR)
        assert np.isfinite(values.momentary)
        assert np.all(np.isfinite(meter.state.history.values()))
