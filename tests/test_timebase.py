"""
Timebase Module Tests

Tests for gating block layout and the rolling power history.
"""

import pytest
import numpy as np

from stereoscope import timebase


class TestGatingLayout:
    """Tests for block count and start positions."""

    def test_stride_is_quarter_block(self):
        block_len = timebase.seconds_to_samples(0.4, 48000)
        assert block_len == 19200
        assert timebase.gating_stride(block_len, 0.75) == 4800

    def test_block_count(self):
        # 1 second at 1000 Hz, 400-sample blocks, stride 100 -> 7 blocks
        assert timebase.compute_gating_block_count(1000, 400, 100) == 7
        assert timebase.compute_gating_block_count(399, 400, 100) == 0
        assert timebase.compute_gating_block_count(400, 400, 100) == 1

    def test_blocks_are_end_aligned(self):
        starts = timebase.compute_gating_block_starts(1050, 400, 100)
        assert starts[-1] == 1050 - 400
        assert np.all(np.diff(starts) == 100)
        assert starts[0] >= 0

    def test_empty_layout(self):
        assert len(timebase.compute_gating_block_starts(10, 400, 100)) == 0

    def test_seconds_to_samples_edge_cases(self):
        assert timebase.seconds_to_samples(0.0, 44100) == 0
        assert timebase.seconds_to_samples(1e-9, 44100) == 1


class TestBlockMeanPowers:
    """Tests for block_mean_powers."""

    def test_matches_direct_computation(self):
        rng = np.random.default_rng(1)
        power = rng.uniform(0.0, 1.0, 2000)
        block_len, stride = 400, 100
        means = timebase.block_mean_powers(power, block_len, stride)
        starts = timebase.compute_gating_block_starts(len(power), block_len, stride)
        expected = [power[s:s + block_len].mean() for s in starts]
        np.testing.assert_allclose(means, expected, rtol=1e-10)

    def test_silence_never_negative(self):
        means = timebase.block_mean_powers(np.zeros(5000), 400, 100)
        assert np.all(means >= 0.0)


class TestPowerHistory:
    """Tests for the rolling prefix-sum power history."""

    def test_block_means_match_direct_computation(self):
        """Streamed in uneven chunks across several compactions, block means match a plain buffer."""
        rng = np.random.default_rng(4)
        history = timebase.PowerHistory(capacity=1000)
        stream = []
        for size in (300, 512, 7, 999, 1000, 250, 640, 33):
            chunk = rng.uniform(0.0, 1.0, size)
            stream.append(chunk)
            history.append(chunk)
        retained = np.concatenate(stream)[-1000:]

        assert len(history) == 1000
        np.testing.assert_allclose(history.values(), retained, rtol=1e-9, atol=1e-12)
        np.testing.assert_allclose(
            history.block_mean_powers(400, 100),
            timebase.block_mean_powers(retained, 400, 100),
            rtol=1e-9,
        )

    def test_window_mean(self):
        history = timebase.PowerHistory(capacity=100)
        history.append(np.full(50, 4.0))
        history.append(np.full(10, 1.0))
        assert history.window_mean(10) == pytest.approx(1.0)
        assert history.window_mean(20) == pytest.approx(2.5)
        # fewer samples than the window: mean of what is held
        assert history.window_mean(500) == pytest.approx(210.0 / 60.0)

    def test_empty_history(self):
        history = timebase.PowerHistory(capacity=100)
        assert len(history) == 0
        assert history.window_mean(10) == 0.0
        assert len(history.block_mean_powers(40, 10)) == 0

    def test_chunk_longer_than_capacity_keeps_newest(self):
        history = timebase.PowerHistory(capacity=8)
        history.append(np.arange(20, dtype=np.float64))
        assert len(history) == 8
        np.testing.assert_allclose(history.values(), np.arange(12, 20))

    def test_silence_after_loud_audio_is_exactly_zero(self):
        history = timebase.PowerHistory(capacity=1000)
        for _ in range(10):
            history.append(np.full(300, 2.0))
        history.append(np.zeros(500))
        assert history.window_mean(500) == 0.0
        assert np.all(history.block_mean_powers(400, 100) >= 0.0)

    def test_clear(self):
        history = timebase.PowerHistory(capacity=100)
        history.append(np.ones(60))
        history.clear()
        assert len(history) == 0
