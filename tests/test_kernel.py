"""
Kernel Module Test Suite

Tests for the per-block metric functions.
Verifies:
- Kernel isolation (no I/O or config dependencies)
- Output ranges and degenerate-input sentinels
- Clip run detection and peak detection
- Band energy normalization and bin partition
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from stereoscope import kernel
from stereoscope.bands import BandMapper, NO_BAND, build_bands
from stereoscope.blocks import magnitude_db


# =============================================================================
# SYNTHETIC SIGNAL GENERATORS (for testing)
# =============================================================================

def generate_sine(freq: float = 440.0, n: int = 2048, sr: int = 44100,
                  amplitude: float = 0.5, phase: float = 0.0) -> np.ndarray:
    """Generate one block of a sine wave."""
    t = np.arange(n) / sr
    return amplitude * np.sin(2 * np.pi * freq * t + phase)


def generate_noise(n: int = 2048, seed: int = 0, amplitude: float = 0.3) -> np.ndarray:
    """Generate deterministic white noise."""
    rng = np.random.default_rng(seed)
    return amplitude * rng.uniform(-1.0, 1.0, n)


# =============================================================================
# ISOLATION TESTS
# =============================================================================

class TestKernelIsolation:
    """Verify kernel has no I/O or config dependencies."""

    def test_no_config_imports(self):
        """Kernel should not import the config module."""
        kernel_path = Path(__file__).parent.parent / 'stereoscope' / 'kernel.py'
        content = kernel_path.read_text()

        assert 'from stereoscope import config' not in content
        assert 'import config' not in content

    def test_no_io_imports(self):
        """Kernel should not perform file or network I/O."""
        kernel_path = Path(__file__).parent.parent / 'stereoscope' / 'kernel.py'
        content = kernel_path.read_text()

        for forbidden in ('open(', 'import socket', 'import logging', 'wavfile'):
            assert forbidden not in content, f"kernel should not contain {forbidden!r}"


# =============================================================================
# PHASE CORRELATION
# =============================================================================

class TestPhaseCorrelation:
    """Tests for compute_phase_correlation."""

    def test_identical_channels(self):
        """Mono signal correlates at +1."""
        x = generate_sine()
        assert kernel.compute_phase_correlation(x, x) == pytest.approx(1.0)

    def test_inverted_channels(self):
        """Polarity-inverted channel correlates at -1."""
        x = generate_sine()
        assert kernel.compute_phase_correlation(x, -x) == pytest.approx(-1.0)

    def test_zero_channel_is_zero_not_nan(self):
        """An all-zero channel yields 0, never NaN."""
        x = generate_sine()
        zeros = np.zeros_like(x)
        assert kernel.compute_phase_correlation(x, zeros) == 0.0
        assert kernel.compute_phase_correlation(zeros, zeros) == 0.0

    def test_range_for_random_inputs(self):
        """Correlation stays in [-1, 1] for arbitrary inputs."""
        for seed in range(20):
            left = generate_noise(seed=seed)
            right = generate_noise(seed=seed + 100)
            c = kernel.compute_phase_correlation(left, right)
            assert -1.0 <= c <= 1.0


# =============================================================================
# DYNAMICS / WIDTH
# =============================================================================

class TestDynamicRange:
    """Tests for compute_dynamic_range."""

    def test_sine_crest_factor(self):
        """A full-period sine has crest factor sqrt(2) (~3.01 dB)."""
        x = generate_sine(freq=441.0, n=2000, sr=44100, amplitude=0.5)
        result = kernel.compute_dynamic_range(x, x)
        assert result['crest_factor'] == pytest.approx(np.sqrt(2), rel=1e-3)
        assert result['dynamic_range'] == pytest.approx(20 * np.log10(np.sqrt(2)), rel=1e-3)

    def test_silence_is_zero(self):
        """Zero RMS yields zero crest factor and dynamic range."""
        zeros = np.zeros(2048)
        result = kernel.compute_dynamic_range(zeros, zeros)
        assert result['crest_factor'] == 0.0
        assert result['dynamic_range'] == 0.0

    def test_per_channel_peaks(self):
        """Per-channel peaks are reported separately."""
        left = generate_sine(amplitude=0.9)
        right = generate_sine(amplitude=0.3)
        result = kernel.compute_dynamic_range(left, right)
        assert result['peak_left'] == pytest.approx(0.9, abs=1e-3)
        assert result['peak_right'] == pytest.approx(0.3, abs=1e-3)
        assert result['peak'] == result['peak_left']


class TestStereoWidth:
    """Tests for compute_stereo_width."""

    def test_mono_has_zero_width(self):
        x = generate_sine()
        assert kernel.compute_stereo_width(x, x) == pytest.approx(0.0)

    def test_inverted_has_full_width(self):
        x = generate_sine()
        assert kernel.compute_stereo_width(x, -x) == pytest.approx(100.0)

    def test_silence(self):
        zeros = np.zeros(1024)
        assert kernel.compute_stereo_width(zeros, zeros) == 0.0


# =============================================================================
# CLIPPING / PEAKS
# =============================================================================

class TestClipDetection:
    """Tests for detect_clipping."""

    def test_five_consecutive_samples_count_once(self):
        """5 consecutive samples at 1.0 in one channel form exactly one clip."""
        left = np.zeros(2048)
        right = np.zeros(2048)
        left[1000:1005] = 1.0

        count, events = kernel.detect_clipping(left, right, threshold=0.99)

        assert count == 1
        assert events == [{'channel': 'left', 'position': 1000, 'length': 5}]

    def test_short_runs_are_ignored(self):
        """Runs shorter than 3 samples are debounced."""
        left = np.zeros(2048)
        left[10] = 1.0
        left[20:22] = -1.0
        count, _ = kernel.detect_clipping(left, np.zeros(2048))
        assert count == 0

    def test_runs_in_either_channel(self):
        """Separate runs in either channel are each counted."""
        left = np.zeros(2048)
        right = np.zeros(2048)
        left[0:3] = 1.0
        left[100:110] = -1.0
        right[500:504] = 0.995
        count, events = kernel.detect_clipping(left, right)
        assert count == 3
        assert [(e['channel'], e['position']) for e in events] == [
            ('left', 0), ('left', 100), ('right', 500)
        ]

    def test_simultaneous_stereo_clip_counts_once(self):
        """Both channels clipping on the same samples is one clip."""
        left = np.zeros(2048)
        right = np.zeros(2048)
        left[1000:1005] = 1.0
        right[1000:1005] = 1.0
        count, events = kernel.detect_clipping(left, right)
        assert count == 1
        assert events == [{'channel': 'both', 'position': 1000, 'length': 5}]

    def test_overlapping_channel_runs_merge(self):
        """Short overs that alternate between channels still form one run."""
        left = np.zeros(64)
        right = np.zeros(64)
        left[10:12] = 1.0
        right[12:14] = -1.0
        count, events = kernel.detect_clipping(left, right)
        assert count == 1
        assert events == [{'channel': 'both', 'position': 10, 'length': 4}]

    def test_threshold_is_exclusive(self):
        """Samples exactly at the threshold do not clip."""
        left = np.full(16, 0.99)
        count, _ = kernel.detect_clipping(left, np.zeros(16), threshold=0.99)
        assert count == 0


class TestPeakDetection:
    """Tests for detect_peaks."""

    def test_peaks_above_threshold(self):
        left = np.zeros(64)
        left[10] = 0.9
        left[30] = -0.95
        left[50] = 0.5
        peaks = kernel.detect_peaks(left, np.zeros(64), threshold=0.8)
        assert [(p['channel'], p['position']) for p in peaks] == [('left', 10), ('left', 30)]
        assert peaks[1]['value'] == pytest.approx(-0.95)

    def test_edges_are_not_peaks(self):
        left = np.zeros(8)
        left[0] = 1.0
        left[-1] = 1.0
        assert kernel.detect_peaks(left, np.zeros(8)) == []


# =============================================================================
# SPECTRAL METRICS
# =============================================================================

class TestSpectralMetrics:
    """Tests for centroid and sub-bass mono ratio."""

    def test_centroid_of_single_bin(self):
        """A spectrum with one non-floor bin has its centroid at that bin."""
        fft_size, sr = 2048, 44100
        db = np.full(fft_size // 2, -100.0)
        db[100] = -6.0
        centroid = kernel.compute_spectral_centroid(db, db, sr, fft_size)
        assert centroid == pytest.approx(100 * sr / fft_size)

    def test_centroid_of_empty_spectrum(self):
        db = np.full(1024, -100.0)
        assert kernel.compute_spectral_centroid(db, db, 44100, 2048) == 0.0

    def test_sub_bass_identical_channels(self):
        """Identical sub-bass content is 100% mono."""
        db = np.full(1024, -40.0)
        ratio = kernel.compute_sub_bass_mono_ratio(db, db, 44100, 2048)
        assert ratio == pytest.approx(100.0)

    def test_sub_bass_half_level(self):
        """Right channel at -6.02 dB relative gives ~50%."""
        left = np.full(1024, -20.0)
        right = left - 20 * np.log10(2)
        ratio = kernel.compute_sub_bass_mono_ratio(left, right, 44100, 2048)
        assert ratio == pytest.approx(50.0, rel=1e-6)

    def test_sub_bass_excludes_empty_bins(self):
        db = np.full(1024, -100.0)
        assert kernel.compute_sub_bass_mono_ratio(db, db, 44100, 2048) == 0.0


# =============================================================================
# BAND ENERGIES
# =============================================================================

class TestBandEnergies:
    """Tests for compute_band_energies and normalization."""

    def setup_method(self):
        self.mapper = BandMapper(build_bands(30, 20.0, 20000.0, True))

    def test_normalized_max_is_one(self):
        x = generate_sine(1000.0) + generate_sine(100.0, amplitude=0.2)
        db = magnitude_db(x)
        energies = kernel.compute_band_energies(db, db, self.mapper, 44100, 2048)
        assert energies.shape == (30,)
        assert np.max(energies) == pytest.approx(1.0)
        assert np.all((energies >= 0.0) & (energies <= 1.0))

    def test_silence_is_all_zeros(self):
        db = np.full(1024, -100.0)
        energies = kernel.compute_band_energies(db, db, self.mapper, 44100, 2048)
        assert np.all(energies == 0.0)

    def test_normalize_handles_non_finite(self):
        raw = np.array([np.nan, 2.0, np.inf, 1.0])
        out = kernel.normalize_band_energies(raw)
        assert np.all(np.isfinite(out))
        assert np.max(out) == pytest.approx(1.0)

    def test_bin_partition_checksum(self):
        """Per-band sums add up to the energy of in-range bins; nothing is double counted."""
        for sr, fft_size in [(44100, 1024), (48000, 2048), (44100, 16384)]:
            rng = np.random.default_rng(fft_size)
            magnitude = rng.uniform(0.0, 1.0, fft_size // 2)
            assignments = self.mapper.bin_assignments(sr, fft_size)
            sums = self.mapper.band_sums(magnitude, sr, fft_size)

            in_range = magnitude[assignments != NO_BAND].sum()
            out_of_range = magnitude[assignments == NO_BAND].sum()
            assert sums.sum() == pytest.approx(in_range)
            assert sums.sum() + out_of_range == pytest.approx(magnitude.sum())


# =============================================================================
# WINDOWS / AGGREGATE
# =============================================================================

class TestWindows:
    """Tests for get_window."""

    @pytest.mark.parametrize('name', ['hann', 'hamming', 'blackman'])
    def test_tapered_windows(self, name):
        w = kernel.get_window(name, 1024)
        assert w.shape == (1024,)
        assert w.max() <= 1.0 + 1e-12
        assert w[0] < 0.1

    def test_rectangular(self):
        assert np.all(kernel.get_window('none', 16) == 1.0)
        assert np.all(kernel.get_window('rectangular', 16) == 1.0)

    def test_unknown_window(self):
        with pytest.raises(ValueError):
            kernel.get_window('kaiser-ish', 16)


class TestBlockMetrics:
    """Tests for compute_block_metrics."""

    def test_contains_all_metrics(self):
        mapper = BandMapper(build_bands(24, 20.0, 20000.0, True))
        left = generate_sine(440.0)
        right = generate_sine(440.0, phase=0.3)
        result = kernel.compute_block_metrics(
            left, right, magnitude_db(left), magnitude_db(right), 44100, 2048, mapper
        )
        for key in ('correlation', 'stereo_width', 'dynamic_range', 'crest_factor',
                    'true_peak', 'spectral_centroid', 'sub_bass_ratio', 'clip_count',
                    'band_energies'):
            assert key in result
        assert 0.0 < result['correlation'] < 1.0
        assert result['spectral_centroid'] == pytest.approx(440.0, rel=0.2)

    def test_window_keeps_raw_peak(self):
        """Windowing affects time-domain metrics but never the true peak."""
        mapper = BandMapper(build_bands(8, 20.0, 20000.0, True))
        left = generate_sine(441.0, amplitude=0.9)
        db = magnitude_db(left)
        result = kernel.compute_block_metrics(left, left, db, db, 44100, 2048, mapper,
                                              time_window='hann')
        assert result['true_peak'] == pytest.approx(0.9, abs=1e-3)
