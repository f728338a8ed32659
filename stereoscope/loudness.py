"""
Loudness Meter Module

Gated loudness over a rolling per-sample power history.

ALGORITHM (equal channel weighting):
1. Per-sample power p = L^2 + R^2, appended to a rolling history
   (timebase.PowerHistory) that keeps the last integration_window_sec
2. Buffer split into end-aligned blocks of block_sec with stride block / 4
3. ungated = -0.691 + 10 * log10(mean block power)
4. Relative gate: keep blocks with power >= 10 ** ((ungated + gate_offset) / 10);
   integrated = same formula over the kept blocks
5. Short-term: most recent short_term_sec of power, ungated
6. Momentary: most recent block_sec of power, ungated
7. Every value is the floor (-70 LUFS) when its block set is empty or silent

Display values are smoothed copies for meters. They are written after the
measured values and never read back by the gating computation.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from stereoscope.metrics import LoudnessValues
from stereoscope.params import LoudnessParams
from stereoscope import timebase

LUFS_OFFSET: float = -0.691


def power_to_lufs(mean_power: float, floor_lufs: float = -70.0) -> float:
    """
    Convert a mean power to LUFS.

    Returns floor_lufs for zero, negative or non-finite power and never
    reports a value below the floor.
    """
    mean_power = float(mean_power)
    if not np.isfinite(mean_power) or mean_power <= 0.0:
        return floor_lufs
    lufs = LUFS_OFFSET + 10.0 * np.log10(mean_power)
    if not np.isfinite(lufs):
        return floor_lufs
    return float(max(lufs, floor_lufs))


def compute_gated_loudness(
    block_powers: np.ndarray,
    gate_offset_lu: float = -10.0,
    floor_lufs: float = -70.0
) -> Dict:
    """
    Two-stage relative gating over a set of block powers.

    CONTRACT:
    - Input: block_powers (1D, non-negative mean power per block)
    - 'gated_mask' selects a subset of the input blocks
    - Every discarded block has power below 'gate_power'
    - 'gated_mean' >= 'ungated_mean' (only the quietest blocks are removed)
    - Empty or silent input -> both LUFS values are floor_lufs, empty mask

    Parameters:
        block_powers: Mean power per gating block
        gate_offset_lu: Relative gate offset (negative, default -10 LU)
        floor_lufs: Silence sentinel

    Returns:
        Dict with 'ungated', 'integrated' (LUFS), 'ungated_mean',
        'gated_mean', 'gate_power' and 'gated_mask'
    """
    powers = np.nan_to_num(np.asarray(block_powers, dtype=np.float64),
                           nan=0.0, posinf=0.0, neginf=0.0)
    result = {
        'ungated': floor_lufs,
        'integrated': floor_lufs,
        'ungated_mean': 0.0,
        'gated_mean': 0.0,
        'gate_power': 0.0,
        'gated_mask': np.zeros(len(powers), dtype=bool),
    }
    if len(powers) == 0:
        return result

    ungated_mean = float(np.mean(powers))
    if ungated_mean <= 0.0:
        return result

    ungated = LUFS_OFFSET + 10.0 * np.log10(ungated_mean)
    gate_power = 10.0 ** ((ungated + gate_offset_lu) / 10.0)
    mask = powers >= gate_power
    gated_mean = float(np.mean(powers[mask])) if mask.any() else 0.0

    result.update(
        ungated=power_to_lufs(ungated_mean, floor_lufs),
        integrated=power_to_lufs(gated_mean, floor_lufs),
        ungated_mean=ungated_mean,
        gated_mean=gated_mean,
        gate_power=float(gate_power),
        gated_mask=mask,
    )
    return result


@dataclass
class LoudnessState:
    """
    Mutable loudness state owned by one LoudnessMeter.

    Reset returns every value to the floor and drops the power history.
    """
    floor_lufs: float = -70.0
    history: Optional[timebase.PowerHistory] = None
    sample_rate: Optional[int] = None
    momentary: float = -70.0
    short_term: float = -70.0
    integrated: float = -70.0
    display_momentary: float = -70.0
    display_short_term: float = -70.0
    display_integrated: float = -70.0

    def reset(self) -> None:
        """Reset state to initial values."""
        self.history = None
        self.sample_rate = None
        for name in ('momentary', 'short_term', 'integrated',
                     'display_momentary', 'display_short_term', 'display_integrated'):
            setattr(self, name, self.floor_lufs)


class LoudnessMeter:
    """
    Streaming gated loudness meter.

    CONTRACT:
    - process() consumes one block of samples and updates all values
    - Call reset() before a new source
    - A change of sample rate restarts the power history
    - Not thread-safe: one owner thread
    """

    def __init__(self, params: Optional[LoudnessParams] = None) -> None:
        self.params = params or LoudnessParams()
        self.state = LoudnessState(floor_lufs=self.params.floor_lufs)
        self.state.reset()
        self._last_gating: Dict = compute_gated_loudness([], floor_lufs=self.params.floor_lufs)

    def reset(self) -> None:
        self.state.reset()
        self._last_gating = compute_gated_loudness([], floor_lufs=self.params.floor_lufs)

    @property
    def last_gating(self) -> Dict:
        """Gating details (block mask, gate power) of the most recent update."""
        return self._last_gating

    def block_powers(self) -> np.ndarray:
        """Mean power of every gating block currently in the history."""
        if self.state.history is None:
            return np.array([], dtype=np.float64)
        block_len = timebase.seconds_to_samples(self.params.block_sec, self.state.sample_rate)
        stride = timebase.gating_stride(block_len, self.params.overlap)
        return self.state.history.block_mean_powers(block_len, stride)

    def process(self, left: np.ndarray, right: np.ndarray, sample_rate: int) -> LoudnessValues:
        """
        Add one block of samples and recompute momentary, short-term and
        integrated loudness.

        Returns:
            The measured (unsmoothed) values
        """
        state = self.state
        params = self.params
        floor = params.floor_lufs

        if state.history is None or state.sample_rate != sample_rate:
            capacity = timebase.seconds_to_samples(params.integration_window_sec, sample_rate)
            state.history = timebase.PowerHistory(capacity)
            state.sample_rate = int(sample_rate)

        left = np.asarray(left, dtype=np.float64)
        right = np.asarray(right, dtype=np.float64)
        with np.errstate(over='ignore', invalid='ignore'):
            power = np.nan_to_num(left ** 2 + right ** 2, nan=0.0, posinf=0.0, neginf=0.0)
        state.history.append(power)

        block_len = timebase.seconds_to_samples(params.block_sec, sample_rate)
        short_len = timebase.seconds_to_samples(params.short_term_sec, sample_rate)

        state.momentary = power_to_lufs(state.history.window_mean(block_len), floor)
        state.short_term = power_to_lufs(state.history.window_mean(short_len), floor)

        self._last_gating = compute_gated_loudness(self.block_powers(), params.gate_offset_lu, floor)
        state.integrated = self._last_gating['integrated']

        self._update_display()
        return self.values()

    def _update_display(self) -> None:
        state = self.state
        smoothing = self.params.get_smoothing()
        state.display_momentary += smoothing['momentary'] * (state.momentary - state.display_momentary)
        state.display_short_term += smoothing['short_term'] * (state.short_term - state.display_short_term)
        state.display_integrated += smoothing['integrated'] * (state.integrated - state.display_integrated)

    def values(self) -> LoudnessValues:
        return LoudnessValues(
            integrated=self.state.integrated,
            short_term=self.state.short_term,
            momentary=self.state.momentary,
        )

    def display_values(self) -> LoudnessValues:
        return LoudnessValues(
            integrated=self.state.display_integrated,
            short_term=self.state.display_short_term,
            momentary=self.state.display_momentary,
        )
