"""
Timebase Module - Gating Block Layout

Deterministic placement of overlapping loudness blocks over a rolling
sample buffer.

DESIGN CONSTRAINTS:
- Blocks are end-aligned: the newest block always ends at the newest sample
- Only whole blocks are laid out; a buffer shorter than one block has none
- No external config imports (explicit parameters)
- PowerHistory keeps running prefix sums, so per-block work scales with
  the block and the number of gating blocks, not the window length

LAYOUT:
- block_len = round(block_sec * sample_rate)
- stride = max(1, round(block_len * (1 - overlap)))   (0.75 overlap -> block / 4)
- n_blocks = 0 if n < block_len else 1 + (n - block_len) // stride
- start[i] = (n - block_len) - (n_blocks - 1 - i) * stride
"""

import numpy as np


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_BLOCK_SEC: float = 0.4
DEFAULT_OVERLAP: float = 0.75


# =============================================================================
# CORE FUNCTIONS
# =============================================================================

def seconds_to_samples(seconds: float, sample_rate: int) -> int:
    """
    Convert a duration to a whole number of samples.

    Parameters:
        seconds: Duration in seconds
        sample_rate: Sample rate (Hz)

    Returns:
        Number of samples (rounded to nearest, at least 1 for positive durations)
    """
    if seconds <= 0 or sample_rate <= 0:
        return 0
    return max(1, int(round(seconds * sample_rate)))


def gating_stride(block_len: int, overlap: float = DEFAULT_OVERLAP) -> int:
    """Hop between consecutive gating blocks (samples)."""
    return max(1, int(round(block_len * (1.0 - overlap))))


def compute_gating_block_count(n_samples: int, block_len: int, stride: int) -> int:
    """
    Number of whole gating blocks that fit in n_samples.

    CONTRACT:
    - 0 if block_len <= 0 or n_samples < block_len
    - otherwise 1 + (n_samples - block_len) // stride
    """
    if block_len <= 0 or stride <= 0 or n_samples < block_len:
        return 0
    return 1 + (n_samples - block_len) // stride


def compute_gating_block_starts(n_samples: int, block_len: int, stride: int) -> np.ndarray:
    """
    Ascending start indices of the end-aligned gating blocks.

    Returns:
        int64 array of length compute_gating_block_count(...); the last start
        is n_samples - block_len
    """
    n_blocks = compute_gating_block_count(n_samples, block_len, stride)
    if n_blocks == 0:
        return np.array([], dtype=np.int64)
    last = n_samples - block_len
    return (last - (n_blocks - 1 - np.arange(n_blocks)) * stride).astype(np.int64)


def block_mean_powers(power: np.ndarray, block_len: int, stride: int) -> np.ndarray:
    """
    Mean of per-sample power over every end-aligned gating block.

    Parameters:
        power: Per-sample power (1D, non-negative)
        block_len: Block length in samples
        stride: Hop between blocks in samples

    Returns:
        float64 array, one mean power per block (empty if no whole block fits)
    """
    power = np.asarray(power, dtype=np.float64)
    starts = compute_gating_block_starts(len(power), block_len, stride)
    if len(starts) == 0:
        return np.array([], dtype=np.float64)
    cumulative = np.concatenate(([0.0], np.cumsum(power)))
    sums = cumulative[starts + block_len] - cumulative[starts]
    # cumsum differences can dip a hair below zero on silent stretches
    return np.maximum(sums / block_len, 0.0)


# =============================================================================
# ROLLING POWER HISTORY
# =============================================================================

class PowerHistory:
    """
    Rolling per-sample power with constant-time window sums.

    CONTRACT:
    - Holds at most `capacity` of the newest samples
    - append() costs O(len(power)) amortized, independent of capacity
    - window_mean() is O(1); block_mean_powers() is O(number of blocks)
    - block_mean_powers() matches the module-level function applied to
      the retained samples (same end-aligned layout)

    Stores running prefix sums in a linear buffer of 2 * capacity + 1
    entries. When the buffer fills, the retained prefix sums move to the
    front and are rebased to start at zero.
    """

    def __init__(self, capacity: int) -> None:
        self.capacity = max(1, int(capacity))
        self._prefix = np.zeros(2 * self.capacity + 1)
        self._start = 0
        self._end = 1

    def __len__(self) -> int:
        return self._end - 1 - self._start

    def clear(self) -> None:
        self._prefix[0] = 0.0
        self._start = 0
        self._end = 1

    def _compact(self) -> None:
        kept = self._prefix[self._start:self._end] - self._prefix[self._start]
        self._prefix[:len(kept)] = kept
        self._start = 0
        self._end = len(kept)

    def append(self, power: np.ndarray) -> None:
        """Add per-sample power values (non-negative, finite)."""
        power = np.asarray(power, dtype=np.float64)[-self.capacity:]
        n = len(power)
        if n == 0:
            return
        if self._end + n > len(self._prefix):
            self._compact()
        last = self._prefix[self._end - 1]
        self._prefix[self._end:self._end + n] = last + np.cumsum(power)
        self._end += n
        self._start = max(self._start, self._end - 1 - self.capacity)

    def window_mean(self, window_len: int) -> float:
        """Mean power of the newest window_len samples (all if fewer); 0 when empty."""
        n = min(int(window_len), len(self))
        if n <= 0:
            return 0.0
        total = self._prefix[self._end - 1] - self._prefix[self._end - 1 - n]
        return max(float(total) / n, 0.0)

    def block_mean_powers(self, block_len: int, stride: int) -> np.ndarray:
        """Mean power of every end-aligned gating block over the retained samples."""
        starts = compute_gating_block_starts(len(self), block_len, stride)
        if len(starts) == 0:
            return np.array([], dtype=np.float64)
        base = self._start + starts
        sums = self._prefix[base + block_len] - self._prefix[base]
        return np.maximum(sums / block_len, 0.0)

    def values(self) -> np.ndarray:
        """Copy of the retained per-sample power."""
        return np.diff(self._prefix[self._start:self._end])
