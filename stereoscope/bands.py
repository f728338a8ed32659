"""
Band Mapper Module

Maps linear FFT bins onto a fixed set of contiguous frequency bands.

DESIGN CONSTRAINTS:
- Bands are generated once from {band_count, min_freq, max_freq, log_scale}
  and shared read-only
- Bands are contiguous and non-overlapping; every bin belongs to exactly one
  band or to none (outside [min_freq, max_freq])
- No state beyond configuration and a per-(sample_rate, fft_size) bin cache
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from stereoscope import config
from stereoscope.params import BandParams, validate_band_params

NO_BAND: int = -1


@dataclass(frozen=True)
class FrequencyBand:
    """One analysis band. Edges in Hz; name combines range name and nearest note."""
    index: int
    low_freq: float
    high_freq: float
    center_freq: float
    name: str
    range_name: str = ''
    note: str = ''


def nearest_note(freq: float, a4: float = config.A4_FREQ_HZ) -> str:
    """
    Name of the equal-tempered note closest to freq, e.g. 'A4' or 'C#2'.

    Returns an empty string for non-positive frequencies.
    """
    if freq <= 0:
        return ''
    half_steps = int(round(12.0 * np.log2(freq / a4)))
    # A is index 9 in the octave starting at C
    note_index = (half_steps + 9) % 12
    octave = (half_steps + 9) // 12 + 4
    return f"{config.NOTE_NAMES[note_index]}{octave}"


def frequency_range_name(freq: float) -> str:
    """Engineering name of the range containing freq (Sub Bass ... Air)."""
    for upper, name in config.FREQUENCY_RANGES:
        if freq < upper:
            return name
    return config.FREQUENCY_RANGES[-1][1]


def band_edges(band_count: int, min_freq: float, max_freq: float, log_scale: bool) -> np.ndarray:
    """
    Compute band_count + 1 ascending edges.

    Log spacing: edge_k = 10 ** (log_min + k * step), step = (log_max - log_min) / band_count.
    Linear spacing: evenly spaced edges.
    """
    if log_scale:
        log_min = np.log10(min_freq)
        log_max = np.log10(max_freq)
        step = (log_max - log_min) / band_count
        edges = 10.0 ** (log_min + np.arange(band_count + 1) * step)
    else:
        edges = np.linspace(min_freq, max_freq, band_count + 1)
    # Pin the outer edges so range checks are exact
    edges[0] = min_freq
    edges[-1] = max_freq
    return edges


def build_bands(
    band_count: int = config.BAND_COUNT,
    min_freq: float = config.MIN_FREQ_HZ,
    max_freq: float = config.MAX_FREQ_HZ,
    log_scale: bool = config.LOG_SCALE
) -> List[FrequencyBand]:
    """
    Generate the ordered band set.

    Parameters:
        band_count: Number of bands (> 0)
        min_freq: Lower edge of band 0 (Hz)
        max_freq: Upper edge of the last band (Hz)
        log_scale: Logarithmic or linear spacing

    Returns:
        List of FrequencyBand, index i at position i

    Raises:
        ConfigurationError: If band_count <= 0 or min_freq >= max_freq
    """
    validate_band_params(BandParams(band_count, min_freq, max_freq, log_scale))
    edges = band_edges(band_count, min_freq, max_freq, log_scale)

    bands = []
    for i in range(band_count):
        low, high = float(edges[i]), float(edges[i + 1])
        center = float(np.sqrt(low * high)) if log_scale else (low + high) / 2.0
        range_name = frequency_range_name(center)
        note = nearest_note(center)
        name = f"{range_name} {note}".strip()
        bands.append(FrequencyBand(i, low, high, center, name, range_name, note))
    return bands


class BandMapper:
    """
    Bin-to-band assignment for one band set.

    CONTRACT:
    - band_index_for_frequency(f) is None outside [min_freq, max_freq]
    - max_freq itself belongs to the last band
    - bin_assignments() is NO_BAND for bins outside the range
    """

    def __init__(self, bands: Sequence[FrequencyBand]) -> None:
        if not bands:
            raise ValueError("BandMapper needs at least one band")
        self.bands: Tuple[FrequencyBand, ...] = tuple(bands)
        self.edges = np.array([b.low_freq for b in self.bands] + [self.bands[-1].high_freq])
        self.edges.setflags(write=False)
        self.centers = np.array([b.center_freq for b in self.bands])
        self.centers.setflags(write=False)
        self._bin_cache: Dict[Tuple[int, int], np.ndarray] = {}

    @classmethod
    def from_params(cls, params: BandParams) -> 'BandMapper':
        return cls(build_bands(params.band_count, params.min_freq, params.max_freq, params.log_scale))

    @property
    def band_count(self) -> int:
        return len(self.bands)

    @property
    def min_freq(self) -> float:
        return float(self.edges[0])

    @property
    def max_freq(self) -> float:
        return float(self.edges[-1])

    def band_index_for_frequency(self, freq: float) -> Optional[int]:
        if not np.isfinite(freq) or freq < self.min_freq or freq > self.max_freq:
            return None
        idx = int(np.searchsorted(self.edges, freq, side='right')) - 1
        return min(idx, self.band_count - 1)

    def bin_assignments(self, sample_rate: int, fft_size: int) -> np.ndarray:
        """
        Band index of every spectrum bin (length fft_size // 2).

        bin_frequency = bin_index * sample_rate / fft_size. Cached per
        (sample_rate, fft_size); the returned array is read-only.
        """
        key = (int(sample_rate), int(fft_size))
        cached = self._bin_cache.get(key)
        if cached is not None:
            return cached

        freqs = np.arange(fft_size // 2) * sample_rate / float(fft_size)
        idx = np.searchsorted(self.edges, freqs, side='right') - 1
        idx = np.minimum(idx, self.band_count - 1)
        outside = (freqs < self.min_freq) | (freqs > self.max_freq)
        idx[outside] = NO_BAND
        idx = idx.astype(np.int64)
        idx.setflags(write=False)
        self._bin_cache[key] = idx
        return idx

    def band_sums(self, values: np.ndarray, sample_rate: int, fft_size: int) -> np.ndarray:
        """
        Sum per-bin values into bands.

        Bins assigned to NO_BAND are dropped, so
        sum(band_sums) == sum(values[bin_assignments != NO_BAND]).
        """
        assignments = self.bin_assignments(sample_rate, fft_size)
        valid = assignments != NO_BAND
        return np.bincount(
            assignments[valid],
            weights=np.asarray(values, dtype=np.float64)[valid],
            minlength=self.band_count,
        )

    def bins_for_band(self, band_index: int, sample_rate: int, fft_size: int) -> np.ndarray:
        """Indices of the bins assigned to band_index."""
        return np.flatnonzero(self.bin_assignments(sample_rate, fft_size) == band_index)
