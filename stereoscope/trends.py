"""
Trend & Classification Module

Per-band trend, volatility and classification over the tracker history,
plus whole-spectrum statistics (entropy, fluidity, density, center of mass).

DESIGN CONSTRAINTS:
- Below `window` history samples a band is left unclassified and the
  analyzer reports "insufficient data" instead of guessing
- The trend is the least-squares slope of energy against the position in
  the window scaled to [0, 1], i.e. the fitted rise across the window.
  A linear ramp from 0.1 to 0.5 has trend 0.4
- Statistics never return NaN; an all-zero spectrum yields 0 entropy and
  density and a centered center of mass
"""

import warnings
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np

from stereoscope.bands import FrequencyBand
from stereoscope.errors import InsufficientHistoryWarning
from stereoscope.metrics import BandTrend, SpectralSummary
from stereoscope.params import TrendParams
from stereoscope.tracker import BandEnergyTracker

EMERGING = 'emerging'
FADING = 'fading'
STABLE = 'stable'


# =============================================================================
# PER-BAND STATISTICS
# =============================================================================

def calculate_trend(values: Sequence[float]) -> float:
    """
    Least-squares slope of values against position scaled to [0, 1].

    CONTRACT:
    - Fewer than 2 values -> 0.0
    - slope = sum((x - mean_x) * (y - mean_y)) / sum((x - mean_x)^2),
      x_i = i / (n - 1)
    """
    y = np.asarray(values, dtype=np.float64)
    n = len(y)
    if n < 2:
        return 0.0
    x = np.linspace(0.0, 1.0, n)
    dx = x - x.mean()
    slope = np.dot(dx, y - y.mean()) / np.dot(dx, dx)
    return float(slope) if np.isfinite(slope) else 0.0


def calculate_volatility(values: Sequence[float]) -> float:
    """Population standard deviation (0.0 for an empty window)."""
    y = np.asarray(values, dtype=np.float64)
    if len(y) == 0:
        return 0.0
    std = np.std(y)
    return float(std) if np.isfinite(std) else 0.0


def classify_band(
    trend: float,
    volatility: float,
    energy: float,
    preceding: Sequence[float],
    params: Optional[TrendParams] = None
) -> Optional[str]:
    """
    Classify one band.

    Rules, checked in order:
    - emerging: trend > 0.1 and energy > 0.2
    - fading: trend < -0.1 and some preceding value > 0.4
    - stable: |trend| < 0.05, volatility < 0.1 and energy > 0.3

    Returns:
        'emerging', 'fading', 'stable' or None (unclassified)
    """
    p = params or TrendParams()
    if trend > p.emerging_trend and energy > p.emerging_energy:
        return EMERGING
    if trend < p.fading_trend and any(v > p.fading_peak_energy for v in preceding):
        return FADING
    if abs(trend) < p.stable_trend and volatility < p.stable_volatility and energy > p.stable_energy:
        return STABLE
    return None


# =============================================================================
# SPECTRUM STATISTICS
# =============================================================================

def spectral_entropy(energies: np.ndarray) -> float:
    """
    Shannon entropy of the sum-to-1 band energy distribution, divided by
    log2(band_count). 0.0 for an empty spectrum or a single band.
    """
    e = np.clip(np.nan_to_num(np.asarray(energies, dtype=np.float64)), 0.0, None)
    n = len(e)
    total = e.sum()
    if n < 2 or total <= 0.0:
        return 0.0
    p = e[e > 0] / total
    entropy = -np.sum(p * np.log2(p))
    return float(np.clip(entropy / np.log2(n), 0.0, 1.0))


def spectral_fluidity(entropy_history: Sequence[float], min_samples: int = 5, scale: float = 10.0) -> float:
    """Mean absolute frame-to-frame entropy change, scaled and clamped to [0, 1]."""
    values = np.asarray(entropy_history, dtype=np.float64)
    if len(values) < max(min_samples, 2):
        return 0.0
    change = np.mean(np.abs(np.diff(values)))
    return float(np.clip(change * scale, 0.0, 1.0))


def spectral_density(energies: np.ndarray, threshold: float = 0.1) -> float:
    """Fraction of bands with energy above threshold."""
    e = np.asarray(energies, dtype=np.float64)
    if len(e) == 0:
        return 0.0
    return float(np.count_nonzero(e > threshold) / len(e))


def spectral_center_of_mass(energies: np.ndarray) -> float:
    """Energy-weighted mean band index; band_count / 2 when there is no energy."""
    e = np.clip(np.nan_to_num(np.asarray(energies, dtype=np.float64)), 0.0, None)
    total = e.sum()
    if total <= 0.0:
        return len(e) / 2.0
    return float(np.dot(np.arange(len(e)), e) / total)


def most_active_range(bands: Sequence[FrequencyBand], energies: np.ndarray) -> str:
    """Range name (Sub Bass ... Air) with the largest summed energy, '' if silent."""
    totals: Dict[str, float] = {}
    for band, energy in zip(bands, energies):
        totals[band.range_name] = totals.get(band.range_name, 0.0) + float(energy)
    if not totals or max(totals.values()) <= 0.0:
        return ''
    return max(totals, key=totals.get)


# =============================================================================
# ANALYZER
# =============================================================================

@dataclass(frozen=True)
class TrendResult:
    emerging: Tuple[BandTrend, ...]
    fading: Tuple[BandTrend, ...]
    stable: Tuple[BandTrend, ...]
    ready: bool
    summary: SpectralSummary


class SpectralMigrationAnalyzer:
    """
    Classifies bands and tracks spectral shape over time.

    Owns the entropy history; band trends are written back into the
    tracker's BandState objects.
    """

    def __init__(self, bands: Sequence[FrequencyBand], params: Optional[TrendParams] = None) -> None:
        self.bands = tuple(bands)
        self.params = params or TrendParams()
        self.entropy_history: Deque[float] = deque(maxlen=self.params.entropy_history)
        self._warned_insufficient = False

    def reset(self) -> None:
        self.entropy_history.clear()
        self._warned_insufficient = False

    def summarize(self, energies: np.ndarray) -> SpectralSummary:
        """Append the entropy of energies to the history and summarize the spectrum."""
        entropy = spectral_entropy(energies)
        self.entropy_history.append(entropy)
        return SpectralSummary(
            entropy=entropy,
            fluidity=spectral_fluidity(
                self.entropy_history, self.params.fluidity_min_samples, self.params.fluidity_scale
            ),
            density=spectral_density(energies, self.params.density_threshold),
            center_of_mass=spectral_center_of_mass(energies),
            most_active_range=most_active_range(self.bands, energies),
        )

    def analyze(self, tracker: BandEnergyTracker) -> TrendResult:
        """
        Classify every band from its last `window` history samples.

        Issues InsufficientHistoryWarning once (until reset) while the
        history is shorter than the window; the result is then empty and
        not ready.
        """
        p = self.params
        energies = tracker.energies()
        summary = self.summarize(energies)

        if tracker.history_length() < p.window:
            if not self._warned_insufficient:
                warnings.warn(
                    f"Trend analysis needs {p.window} history samples, "
                    f"have {tracker.history_length()}; bands left unclassified",
                    InsufficientHistoryWarning,
                    stacklevel=2,
                )
                self._warned_insufficient = True
            for state in tracker.states:
                state.trend = 0.0
                state.volatility = 0.0
                state.classification = None
            return TrendResult((), (), (), False, summary)

        groups: Dict[str, List[BandTrend]] = {EMERGING: [], FADING: [], STABLE: []}
        for state in tracker.states:
            history = list(state.history)
            recent = history[-p.window:]
            preceding = history[-(p.window + 1):-1]

            state.trend = calculate_trend(recent)
            state.volatility = calculate_volatility(recent)
            state.classification = classify_band(
                state.trend, state.volatility, state.energy, preceding, p
            )
            if state.classification is not None:
                groups[state.classification].append(
                    BandTrend(state.index, state.trend, state.volatility, state.energy)
                )

        return TrendResult(
            emerging=tuple(groups[EMERGING]),
            fading=tuple(groups[FADING]),
            stable=tuple(groups[STABLE]),
            ready=True,
            summary=summary,
        )
