"""
Audio Block Module

One analysis frame as delivered by the host: two channels of time-domain
samples plus their dB magnitude spectra.

DESIGN CONSTRAINTS:
- Blocks are immutable once built (arrays are copied and marked read-only)
- Non-finite samples are substituted on construction, never propagated:
  time samples become 0.0, dB bins become the dB floor (or 0 dB for +inf)
- Shape problems are programming errors and raise ValueError
"""

from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from scipy.fft import rfft

from stereoscope import config
from stereoscope.kernel import get_window


def _readonly(values: np.ndarray) -> np.ndarray:
    values.setflags(write=False)
    return values


def _sanitize_time(samples) -> np.ndarray:
    arr = np.array(samples, dtype=np.float64)
    return np.nan_to_num(arr, nan=0.0, posinf=0.0, neginf=0.0)


def _sanitize_db(bins) -> np.ndarray:
    arr = np.array(bins, dtype=np.float64)
    return np.nan_to_num(arr, nan=config.DB_FLOOR, posinf=0.0, neginf=config.DB_FLOOR)


def magnitude_db(
    samples: np.ndarray,
    window: str = 'hann',
    db_floor: float = config.DB_FLOOR
) -> np.ndarray:
    """
    Compute a dB magnitude spectrum of one channel.

    CONTRACT:
    - Input: samples (1D float array of length fft_size)
    - Output: (fft_size // 2,) float64 array in dB, values >= db_floor
    - A full-scale sine centered on a bin reads close to 0 dB
    - Deterministic: same input -> same output

    Parameters:
        samples: Time-domain samples
        window: Window name understood by kernel.get_window
        db_floor: Lowest reported level

    Returns:
        dB magnitudes for bins 0 .. fft_size / 2 - 1
    """
    n = len(samples)
    win = get_window(window, n)
    spectrum = rfft(np.asarray(samples, dtype=np.float64) * win)[:n // 2]
    scale = 2.0 / max(np.sum(win), 1e-12)
    magnitude = np.abs(spectrum) * scale
    db = 20.0 * np.log10(np.maximum(magnitude, 10.0 ** (db_floor / 20.0)))
    return np.maximum(db, db_floor)


@dataclass(frozen=True)
class AudioBlock:
    """
    One stereo analysis frame.

    Attributes:
        left, right: Time-domain samples in [-1, 1], length fft_size
        freq_left, freq_right: dB magnitudes, length fft_size // 2
        sample_rate: Sample rate in Hz
        fft_size: One of config.VALID_FFT_SIZES
        timestamp: Capture time in seconds (host clock)
        had_non_finite: True if any NaN or Infinity was substituted
    """
    left: np.ndarray
    right: np.ndarray
    freq_left: np.ndarray
    freq_right: np.ndarray
    sample_rate: int
    fft_size: int
    timestamp: float = 0.0
    had_non_finite: bool = field(default=False, compare=False)

    def __post_init__(self) -> None:
        if not config.is_valid_fft_size(self.fft_size):
            raise ValueError(
                f"fft_size must be one of {config.VALID_FFT_SIZES}, got {self.fft_size}"
            )
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")

        raw = [np.asarray(a, dtype=np.float64) for a in
               (self.left, self.right, self.freq_left, self.freq_right)]
        for name, arr, expected in zip(
            ('left', 'right', 'freq_left', 'freq_right'),
            raw,
            (self.fft_size, self.fft_size, self.fft_size // 2, self.fft_size // 2),
        ):
            if arr.ndim != 1 or len(arr) != expected:
                raise ValueError(f"{name} must be 1D with length {expected}, got shape {arr.shape}")

        non_finite = any(not np.all(np.isfinite(arr)) for arr in raw)

        object.__setattr__(self, 'left', _readonly(_sanitize_time(raw[0])))
        object.__setattr__(self, 'right', _readonly(_sanitize_time(raw[1])))
        object.__setattr__(self, 'freq_left', _readonly(_sanitize_db(raw[2])))
        object.__setattr__(self, 'freq_right', _readonly(_sanitize_db(raw[3])))
        object.__setattr__(self, 'sample_rate', int(self.sample_rate))
        object.__setattr__(self, 'fft_size', int(self.fft_size))
        object.__setattr__(self, 'had_non_finite', bool(self.had_non_finite or non_finite))

    @classmethod
    def from_time_data(
        cls,
        left: np.ndarray,
        right: np.ndarray,
        sample_rate: int,
        timestamp: float = 0.0,
        window: str = 'hann'
    ) -> 'AudioBlock':
        """
        Build a block from time-domain samples only, deriving both spectra.

        The FFT size is the channel length, which must be a valid FFT size.
        """
        raw_left = np.asarray(left, dtype=np.float64)
        raw_right = np.asarray(right, dtype=np.float64)
        non_finite = not (np.all(np.isfinite(raw_left)) and np.all(np.isfinite(raw_right)))
        left = _sanitize_time(raw_left)
        right = _sanitize_time(raw_right)
        return cls(
            left=left,
            right=right,
            freq_left=magnitude_db(left, window),
            freq_right=magnitude_db(right, window),
            sample_rate=sample_rate,
            fft_size=len(left),
            timestamp=timestamp,
            had_non_finite=non_finite,
        )

    @property
    def duration_sec(self) -> float:
        return self.fft_size / float(self.sample_rate)

    @property
    def is_silent(self) -> bool:
        """True when both channels are exactly zero."""
        return not (np.any(self.left) or np.any(self.right))

    def bin_frequencies(self) -> np.ndarray:
        """Frequency of every spectrum bin: bin_index * sample_rate / fft_size."""
        return np.arange(self.fft_size // 2) * self.sample_rate / float(self.fft_size)


def silent_block(
    fft_size: int = config.DEFAULT_FFT_SIZE,
    sample_rate: int = config.DEFAULT_SAMPLE_RATE,
    timestamp: Optional[float] = None
) -> AudioBlock:
    """All-zero block with floor spectra."""
    zeros = np.zeros(fft_size)
    floor = np.full(fft_size // 2, config.DB_FLOOR)
    return AudioBlock(zeros, zeros, floor, floor, sample_rate, fft_size,
                      0.0 if timestamp is None else timestamp)
