"""
Block Metrics Kernel - Per-Block Signal Processing Functions

This module contains the deterministic, side-effect-free metric functions
applied to one stereo block.

DESIGN CONSTRAINTS:
- No I/O operations
- No hidden state: every function depends only on its arguments
- No config module imports - all parameters are explicit
- Only numpy and scipy dependencies
- Never returns NaN or Infinity: degenerate inputs yield the documented
  sentinel (0 correlation, 0 dynamic range, all-zero energies)

PROCESSING PIPELINE (per block):
1. Time-domain metrics (correlation, dynamic range, stereo width, clipping, peaks)
2. Spectral metrics from dB bins (centroid, sub-bass mono ratio)
3. Band energies via the band mapper, normalized to max = 1
"""

from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy import signal as scipy_signal


# =============================================================================
# DEFAULT PARAMETERS (Explicit - No Config Imports)
# =============================================================================

DEFAULT_CLIP_THRESHOLD: float = 0.99
DEFAULT_CLIP_MIN_RUN: int = 3
DEFAULT_SUB_BASS_CUTOFF_HZ: float = 100.0
DEFAULT_PEAK_THRESHOLD: float = 0.8
DEFAULT_DB_FLOOR: float = -100.0
DEFAULT_ENERGY_EPSILON: float = 1e-12

WINDOW_NAMES: Tuple[str, ...] = ('none', 'rectangular', 'hann', 'hamming', 'blackman')


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_window(name: str, length: int) -> np.ndarray:
    """
    Create an analysis window.

    CONTRACT:
    - Input: name in WINDOW_NAMES, length (positive int)
    - Output: (length,) float64 array
    - 'none' and 'rectangular' return all ones

    Raises:
        ValueError: Unknown window name
    """
    if name in ('none', 'rectangular'):
        return np.ones(length)
    if name in ('hann', 'hamming', 'blackman'):
        return scipy_signal.get_window(name, length, fftbins=True).astype(np.float64)
    raise ValueError(f"Unknown window function: {name}")


def apply_window(samples: np.ndarray, name: str) -> np.ndarray:
    """Multiply samples by the named window (copy; input untouched)."""
    samples = np.asarray(samples, dtype=np.float64)
    if name in ('none', 'rectangular'):
        return samples.copy()
    return samples * get_window(name, len(samples))


def db_to_linear(db: np.ndarray, db_floor: float = DEFAULT_DB_FLOOR) -> np.ndarray:
    """
    Reconstruct linear magnitude from dB: 10 ** (dB / 20).

    Bins at or below db_floor are treated as empty (magnitude 0).
    """
    db = np.asarray(db, dtype=np.float64)
    linear = np.power(10.0, db / 20.0)
    linear[~(db > db_floor)] = 0.0
    return linear


def _finite_or(value: float, sentinel: float) -> float:
    value = float(value)
    return value if np.isfinite(value) else sentinel


def _runs(over: np.ndarray, min_run: int) -> List[Tuple[int, int]]:
    """(start, length) of every run of True lasting at least min_run samples."""
    if not over.any():
        return []
    padded = np.concatenate(([0], over.astype(np.int8), [0]))
    edges = np.diff(padded)
    starts = np.flatnonzero(edges == 1)
    ends = np.flatnonzero(edges == -1)
    lengths = ends - starts
    keep = lengths >= min_run
    return [(int(s), int(n)) for s, n in zip(starts[keep], lengths[keep])]


# =============================================================================
# TIME-DOMAIN METRICS
# =============================================================================

def compute_phase_correlation(left: np.ndarray, right: np.ndarray) -> float:
    """
    Compute phase correlation between channels.

    CONTRACT:
    - Input: left, right (1D float arrays of equal length)
    - Output: float in [-1, 1]
    - correlation = sum(L * R) / sqrt(sum(L^2) * sum(R^2))
    - 0.0 when either channel has zero energy
    - Deterministic: same input -> same output

    Parameters:
        left: Left channel samples
        right: Right channel samples

    Returns:
        Correlation coefficient (+1 mono, 0 unrelated, -1 inverted)
    """
    left = np.asarray(left, dtype=np.float64)
    right = np.asarray(right, dtype=np.float64)

    sum_lr = np.dot(left, right)
    sum_ll = np.dot(left, left)
    sum_rr = np.dot(right, right)

    if sum_ll == 0.0 or sum_rr == 0.0:
        return 0.0

    correlation = sum_lr / np.sqrt(sum_ll * sum_rr)
    return float(np.clip(_finite_or(correlation, 0.0), -1.0, 1.0))


def compute_dynamic_range(left: np.ndarray, right: np.ndarray) -> Dict[str, float]:
    """
    Compute crest factor and dynamic range of one block.

    CONTRACT:
    - peak = max(|L|, |R|) over the block
    - rms = sqrt(mean((L^2 + R^2) / 2))
    - crest_factor = peak / rms, dynamic_range = 20 * log10(crest_factor) dB
    - Both are 0.0 when rms is 0
    - Per-channel peaks are reported alongside (true peak per channel)

    Parameters:
        left: Left channel samples
        right: Right channel samples

    Returns:
        Dict with 'dynamic_range', 'crest_factor', 'peak', 'peak_left',
        'peak_right', 'rms'
    """
    left = np.asarray(left, dtype=np.float64)
    right = np.asarray(right, dtype=np.float64)

    peak_left = float(np.max(np.abs(left))) if len(left) else 0.0
    peak_right = float(np.max(np.abs(right))) if len(right) else 0.0
    peak = max(peak_left, peak_right)
    rms = float(np.sqrt(np.mean((left ** 2 + right ** 2) / 2.0))) if len(left) else 0.0

    if rms == 0.0:
        return {
            'dynamic_range': 0.0,
            'crest_factor': 0.0,
            'peak': peak,
            'peak_left': peak_left,
            'peak_right': peak_right,
            'rms': 0.0,
        }

    crest_factor = peak / rms
    dynamic_range = 20.0 * np.log10(crest_factor) if crest_factor > 0 else 0.0

    return {
        'dynamic_range': _finite_or(dynamic_range, 0.0),
        'crest_factor': _finite_or(crest_factor, 0.0),
        'peak': peak,
        'peak_left': peak_left,
        'peak_right': peak_right,
        'rms': rms,
    }


def compute_stereo_width(left: np.ndarray, right: np.ndarray) -> float:
    """
    Stereo width as the side share of mid + side energy, in percent.

    mid = (L + R) / 2, side = (L - R) / 2. Returns 0 when both energies are 0.
    """
    left = np.asarray(left, dtype=np.float64)
    right = np.asarray(right, dtype=np.float64)
    mid = (left + right) / 2.0
    side = (left - right) / 2.0
    mid_energy = np.dot(mid, mid)
    side_energy = np.dot(side, side)
    total = mid_energy + side_energy
    if total == 0.0:
        return 0.0
    return float(np.clip(_finite_or(side_energy / total * 100.0, 0.0), 0.0, 100.0))


def detect_clipping(
    left: np.ndarray,
    right: np.ndarray,
    threshold: float = DEFAULT_CLIP_THRESHOLD,
    min_run: int = DEFAULT_CLIP_MIN_RUN
) -> Tuple[int, List[Dict]]:
    """
    Detect clipped runs in either channel.

    CONTRACT:
    - A sample position is over when |L| > threshold or |R| > threshold
    - A clip is a run of at least min_run consecutive over positions
    - Each run counts once regardless of its length or of how many
      channels clip in it (a simultaneous stereo clip is one clip)
    - Runs shorter than min_run are ignored (single-sample overs)
    - Event channel is 'left', 'right' or 'both' (channels over anywhere
      in the run)

    Parameters:
        left: Left channel samples
        right: Right channel samples
        threshold: Absolute clip level (default 0.99)
        min_run: Minimum run length (default 3)

    Returns:
        Tuple of (clip_count, events) where each event is a dict with
        'channel', 'position' and 'length'
    """
    over_l = np.abs(np.asarray(left, dtype=np.float64)) > threshold
    over_r = np.abs(np.asarray(right, dtype=np.float64)) > threshold

    events = []
    for start, length in _runs(over_l | over_r, min_run):
        in_l = bool(over_l[start:start + length].any())
        in_r = bool(over_r[start:start + length].any())
        channel = 'both' if in_l and in_r else ('left' if in_l else 'right')
        events.append({'channel': channel, 'position': start, 'length': length})
    return len(events), events


def detect_peaks(
    left: np.ndarray,
    right: np.ndarray,
    threshold: float = DEFAULT_PEAK_THRESHOLD
) -> List[Dict]:
    """
    Local maxima of |x| above threshold, per channel.

    A sample is a peak when |x[i]| > threshold and it is strictly greater
    than both neighbours. The first and last sample are never peaks.
    """
    peaks = []
    for channel, samples in (('left', left), ('right', right)):
        samples = np.asarray(samples, dtype=np.float64)
        if len(samples) < 3:
            continue
        mag = np.abs(samples)
        inner = mag[1:-1]
        mask = (inner > threshold) & (inner > mag[:-2]) & (inner > mag[2:])
        for idx in np.flatnonzero(mask) + 1:
            peaks.append({'channel': channel, 'position': int(idx), 'value': float(samples[idx])})
    return peaks


# =============================================================================
# SPECTRAL METRICS
# =============================================================================

def compute_spectral_centroid(
    freq_left: np.ndarray,
    freq_right: np.ndarray,
    sample_rate: int,
    fft_size: int,
    db_floor: float = DEFAULT_DB_FLOOR
) -> float:
    """
    Magnitude-weighted mean frequency in Hz.

    CONTRACT:
    - magnitude_i = (10^(dBL_i/20) + 10^(dBR_i/20)) / 2
    - freq_i = i * sample_rate / fft_size
    - centroid = sum(freq_i * magnitude_i) / sum(magnitude_i)
    - 0.0 when the spectrum is empty (all bins at or below db_floor)
    """
    magnitude = (db_to_linear(freq_left, db_floor) + db_to_linear(freq_right, db_floor)) / 2.0
    total = np.sum(magnitude)
    if total <= 0.0:
        return 0.0
    freqs = np.arange(len(magnitude)) * sample_rate / float(fft_size)
    return _finite_or(np.dot(freqs, magnitude) / total, 0.0)


def compute_sub_bass_mono_ratio(
    freq_left: np.ndarray,
    freq_right: np.ndarray,
    sample_rate: int,
    fft_size: int,
    cutoff_hz: float = DEFAULT_SUB_BASS_CUTOFF_HZ,
    db_floor: float = DEFAULT_DB_FLOOR
) -> float:
    """
    Similarity of left and right magnitude below cutoff_hz, in percent.

    CONTRACT:
    - Bins 1 .. floor(cutoff_hz * fft_size / sample_rate) are used (DC skipped)
    - Per bin: min(|L|, |R|) / max(|L|, |R|)
    - Bins where either channel has zero magnitude are excluded
    - 0.0 when no bin qualifies; otherwise the mean ratio * 100
    """
    cutoff_bin = int(np.floor(cutoff_hz * fft_size / float(sample_rate)))
    cutoff_bin = min(cutoff_bin, len(freq_left) - 1)
    if cutoff_bin < 1:
        return 0.0

    mag_l = db_to_linear(freq_left[1:cutoff_bin + 1], db_floor)
    mag_r = db_to_linear(freq_right[1:cutoff_bin + 1], db_floor)
    valid = (mag_l > 0) & (mag_r > 0)
    if not valid.any():
        return 0.0

    ratio = np.minimum(mag_l[valid], mag_r[valid]) / np.maximum(mag_l[valid], mag_r[valid])
    return _finite_or(np.mean(ratio) * 100.0, 0.0)


def normalize_band_energies(raw: np.ndarray, epsilon: float = DEFAULT_ENERGY_EPSILON) -> np.ndarray:
    """
    Scale band energies so the largest is 1.

    All zeros (or a non-positive total) stay all zeros. Non-finite entries
    are treated as 0 energy.
    """
    raw = np.nan_to_num(np.asarray(raw, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    raw = np.maximum(raw, 0.0)
    if np.sum(raw) <= 0.0:
        return np.zeros_like(raw)
    return np.clip(raw / max(np.max(raw), epsilon), 0.0, 1.0)


def compute_band_energies(
    freq_left: np.ndarray,
    freq_right: np.ndarray,
    mapper,
    sample_rate: int,
    fft_size: int,
    db_floor: float = DEFAULT_DB_FLOOR,
    epsilon: float = DEFAULT_ENERGY_EPSILON
) -> np.ndarray:
    """
    Normalized energy per band.

    CONTRACT:
    - Input: dB spectra, a BandMapper, sample_rate, fft_size
    - Output: (band_count,) float64 array in [0, 1]
    - Per band: sum of linear magnitude of its bins, averaged across channels
    - max(output) == 1 whenever total energy > 0, else all zeros

    Parameters:
        freq_left: Left channel dB spectrum
        freq_right: Right channel dB spectrum
        mapper: BandMapper for the engine's band set
        sample_rate: Sample rate (Hz)
        fft_size: FFT size of the block
        db_floor: dB level treated as empty
        epsilon: Normalization floor

    Returns:
        Normalized band energies
    """
    magnitude = (db_to_linear(freq_left, db_floor) + db_to_linear(freq_right, db_floor)) / 2.0
    raw = mapper.band_sums(magnitude, sample_rate, fft_size)
    return normalize_band_energies(raw, epsilon)


# =============================================================================
# BLOCK AGGREGATE
# =============================================================================

def compute_block_metrics(
    left: np.ndarray,
    right: np.ndarray,
    freq_left: np.ndarray,
    freq_right: np.ndarray,
    sample_rate: int,
    fft_size: int,
    mapper,
    clip_threshold: float = DEFAULT_CLIP_THRESHOLD,
    clip_min_run: int = DEFAULT_CLIP_MIN_RUN,
    sub_bass_cutoff_hz: float = DEFAULT_SUB_BASS_CUTOFF_HZ,
    peak_threshold: float = DEFAULT_PEAK_THRESHOLD,
    time_window: str = 'none',
    db_floor: float = DEFAULT_DB_FLOOR
) -> Dict:
    """
    Compute every instantaneous metric of one block.

    Correlation, width and dynamic range use the windowed time data when
    time_window is not 'none'; clipping and peaks always use raw samples.

    Returns:
        Dict with 'correlation', 'stereo_width', 'dynamic_range',
        'crest_factor', 'true_peak', 'peak_left', 'peak_right', 'rms',
        'spectral_centroid', 'sub_bass_ratio', 'clip_count', 'clip_events',
        'peaks', 'band_energies'
    """
    win_left = apply_window(left, time_window)
    win_right = apply_window(right, time_window)

    dynamics = compute_dynamic_range(win_left, win_right)
    raw_dynamics = dynamics if time_window in ('none', 'rectangular') else compute_dynamic_range(left, right)
    clip_count, clip_events = detect_clipping(left, right, clip_threshold, clip_min_run)

    return {
        'correlation': compute_phase_correlation(win_left, win_right),
        'stereo_width': compute_stereo_width(win_left, win_right),
        'dynamic_range': dynamics['dynamic_range'],
        'crest_factor': dynamics['crest_factor'],
        'true_peak': raw_dynamics['peak'],
        'peak_left': raw_dynamics['peak_left'],
        'peak_right': raw_dynamics['peak_right'],
        'rms': raw_dynamics['rms'],
        'spectral_centroid': compute_spectral_centroid(
            freq_left, freq_right, sample_rate, fft_size, db_floor
        ),
        'sub_bass_ratio': compute_sub_bass_mono_ratio(
            freq_left, freq_right, sample_rate, fft_size, sub_bass_cutoff_hz, db_floor
        ),
        'clip_count': clip_count,
        'clip_events': clip_events,
        'peaks': detect_peaks(left, right, peak_threshold),
        'band_energies': compute_band_energies(
            freq_left, freq_right, mapper, sample_rate, fft_size, db_floor
        ),
    }
