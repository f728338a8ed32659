"""
Cross-Band Relationship Module

Pairwise analysis of bands:
- Energy relationships: Pearson correlation between band energy histories,
  classified by correlation and frequency ratio
- Phase coherence: cross-channel phase alignment per band (diagonal) and
  between different bands (off-diagonal), measured from a real FFT of the
  block's time data

Both matrices are smoothed over the last `history_length` analysis cycles
with exponential weights (weight = base ** k, newest cycle highest).

DESIGN CONSTRAINTS:
- Matrices are symmetric, values in [-1, 1], never NaN
- Diagonals are defined: self-correlation (1 when the band varies, else 0)
  and cross-channel coherence (0 for a band without energy)
"""

import math
import warnings
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Sequence, Tuple

import numpy as np
from scipy.fft import rfft

from stereoscope.bands import NO_BAND, BandMapper, FrequencyBand
from stereoscope.errors import InsufficientHistoryWarning
from stereoscope.kernel import get_window
from stereoscope.metrics import Connection, Relationship, RelationshipMatrix, frozen_array
from stereoscope.params import PhaseParams, RelationshipParams
from stereoscope.tracker import BandEnergyTracker

HARMONIC = 'harmonic'
MUSICAL = 'musical'
SYNERGISTIC = 'synergistic'
COOPERATIVE = 'cooperative'
CONFLICTING = 'conflicting'
COMPETING = 'competing'
NEUTRAL = 'neutral'
SELF = 'self'


# =============================================================================
# CLASSIFICATION
# =============================================================================

def _near_integer(value: float, tolerance: float) -> bool:
    return abs(value - round(value)) < tolerance


def is_harmonic_ratio(freq_a: float, freq_b: float, tolerance: float = 0.05) -> bool:
    """True if freq_b / freq_a or its reciprocal is within tolerance of an integer."""
    if freq_a <= 0 or freq_b <= 0:
        return False
    ratio = freq_b / freq_a
    return _near_integer(ratio, tolerance) or _near_integer(1.0 / ratio, tolerance)


def is_semitone_ratio(freq_a: float, freq_b: float, tolerance: float = 0.1) -> bool:
    """True if the interval 12 * log2(freq_b / freq_a) is within tolerance of whole semitones."""
    if freq_a <= 0 or freq_b <= 0:
        return False
    return _near_integer(12.0 * math.log2(freq_b / freq_a), tolerance)


def classify_relationship(
    correlation: float,
    freq_a: float,
    freq_b: float,
    harmonic_tolerance: float = 0.05,
    semitone_tolerance: float = 0.1
) -> str:
    """
    Relationship type of a band pair.

    - correlation > 0.6: 'harmonic' (integer ratio), 'musical' (whole
      semitones) or 'synergistic'
    - 0.3 < correlation <= 0.6: 'cooperative'
    - correlation < -0.6: 'conflicting'
    - -0.6 <= correlation < -0.3: 'competing'
    - otherwise 'neutral'
    """
    if correlation > 0.6:
        if is_harmonic_ratio(freq_a, freq_b, harmonic_tolerance):
            return HARMONIC
        if is_semitone_ratio(freq_a, freq_b, semitone_tolerance):
            return MUSICAL
        return SYNERGISTIC
    if correlation > 0.3:
        return COOPERATIVE
    if correlation < -0.6:
        return CONFLICTING
    if correlation < -0.3:
        return COMPETING
    return NEUTRAL


def classify_matrix(
    correlation: np.ndarray,
    centers: Sequence[float],
    harmonic_tolerance: float = 0.05,
    semitone_tolerance: float = 0.1
) -> Tuple[Tuple[str, ...], ...]:
    """Type label for every cell; the diagonal is 'self'."""
    n = correlation.shape[0]
    kinds = [[SELF] * n for _ in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            kind = classify_relationship(
                float(correlation[i, j]), centers[i], centers[j],
                harmonic_tolerance, semitone_tolerance
            )
            kinds[i][j] = kind
            kinds[j][i] = kind
    return tuple(tuple(row) for row in kinds)


# =============================================================================
# CORRELATION
# =============================================================================

def correlation_matrix(histories: np.ndarray) -> np.ndarray:
    """
    Pearson correlation between every pair of rows.

    CONTRACT:
    - Input: (n, k) array, one history per band
    - Output: symmetric (n, n) array in [-1, 1]
    - Rows with zero variance correlate 0 with everything, including
      themselves; other diagonal entries are 1
    """
    h = np.nan_to_num(np.asarray(histories, dtype=np.float64))
    n = h.shape[0]
    if h.ndim != 2 or h.shape[1] < 2:
        return np.zeros((n, n))

    centered = h - h.mean(axis=1, keepdims=True)
    norms = np.sqrt(np.sum(centered ** 2, axis=1))
    varying = norms > 1e-12
    unit = np.zeros_like(centered)
    unit[varying] = centered[varying] / norms[varying, np.newaxis]

    corr = np.clip(unit @ unit.T, -1.0, 1.0)
    corr = (corr + corr.T) / 2.0
    np.fill_diagonal(corr, varying.astype(np.float64))
    return corr


def pairwise_slopes(cycles: np.ndarray) -> np.ndarray:
    """Least-squares slope per cell across cycles (axis 0), per cycle."""
    k = cycles.shape[0]
    if k < 2:
        return np.zeros(cycles.shape[1:])
    x = np.arange(k, dtype=np.float64)
    dx = x - x.mean()
    centered = cycles - cycles.mean(axis=0)
    return np.tensordot(dx, centered, axes=(0, 0)) / np.dot(dx, dx)


class MatrixSmoother:
    """
    Exponentially weighted average over the last history_length matrices.

    CONTRACT:
    - Fewer than min_cycles matrices: the latest matrix is returned as is
    - Otherwise weight_k = base ** k for k = 0 (oldest) .. m - 1 (newest)
    - trend() is zero until trend_min_cycles matrices are held
    - Non-finite cells are stored as 0, so one bad cycle cannot leave NaN
      in the history
    """

    def __init__(
        self,
        history_length: int = 30,
        base: float = 1.5,
        min_cycles: int = 3,
        trend_min_cycles: int = 5
    ) -> None:
        self.base = base
        self.min_cycles = min_cycles
        self.trend_min_cycles = trend_min_cycles
        self.history: Deque[np.ndarray] = deque(maxlen=history_length)

    def __len__(self) -> int:
        return len(self.history)

    def reset(self) -> None:
        self.history.clear()

    def push(self, matrix: np.ndarray) -> np.ndarray:
        matrix = np.array(matrix, dtype=np.float64, copy=True)
        self.history.append(np.nan_to_num(matrix, nan=0.0, posinf=0.0, neginf=0.0))
        return self.smoothed()

    def smoothed(self) -> Optional[np.ndarray]:
        if not self.history:
            return None
        if len(self.history) < self.min_cycles:
            return self.history[-1].copy()
        stack = np.stack(self.history)
        weights = self.base ** np.arange(len(stack), dtype=np.float64)
        weights /= weights.sum()
        return np.tensordot(weights, stack, axes=(0, 0))

    def trend(self) -> Optional[np.ndarray]:
        if not self.history:
            return None
        if len(self.history) < self.trend_min_cycles:
            return np.zeros_like(self.history[-1])
        return pairwise_slopes(np.stack(self.history))


# =============================================================================
# ENERGY RELATIONSHIPS
# =============================================================================

@dataclass(frozen=True)
class RelationshipResult:
    matrix: RelationshipMatrix
    relationships: Tuple[Relationship, ...]
    conflicting_pairs: Tuple[Relationship, ...]
    dominant_bands: Tuple[int, ...]
    connections: Tuple[Connection, ...]
    ready: bool


class BandRelationshipAnalyzer:
    """
    Discovers which bands move together.

    Correlates the last history_length samples of every band history,
    smooths the matrix across cycles and reports active relationships,
    conflicting pairs, dominant bands and connections.
    """

    def __init__(self, bands: Sequence[FrequencyBand], params: Optional[RelationshipParams] = None) -> None:
        self.bands = tuple(bands)
        self.params = params or RelationshipParams()
        self.centers = [b.center_freq for b in self.bands]
        self.smoother = MatrixSmoother(
            self.params.history_length,
            self.params.smoothing_base,
            self.params.smoothing_min_cycles,
            self.params.trend_min_cycles,
        )
        self._warned_insufficient = False

    def reset(self) -> None:
        self.smoother.reset()
        self._warned_insufficient = False

    def dominant_bands(self, energies: np.ndarray) -> Tuple[int, ...]:
        return tuple(int(i) for i in np.flatnonzero(np.asarray(energies) > self.params.dominant_energy))

    def analyze(self, tracker: BandEnergyTracker) -> RelationshipResult:
        p = self.params
        energies = tracker.energies()
        dominant = self.dominant_bands(energies)

        if tracker.history_length() < p.min_history:
            if not self._warned_insufficient:
                warnings.warn(
                    f"Relationship analysis needs {p.min_history} history samples, "
                    f"have {tracker.history_length()}; reporting neutral matrix",
                    InsufficientHistoryWarning,
                    stacklevel=2,
                )
                self._warned_insufficient = True
            return RelationshipResult(
                RelationshipMatrix.empty(len(self.bands)), (), (), dominant, (), False
            )

        raw = correlation_matrix(tracker.history_matrix(p.history_length))
        corr = np.clip(self.smoother.push(raw), -1.0, 1.0)
        trend = self.smoother.trend()
        kinds = classify_matrix(corr, self.centers, p.harmonic_tolerance, p.semitone_tolerance)
        matrix = RelationshipMatrix(frozen_array(corr), frozen_array(trend), kinds)

        relationships: List[Relationship] = []
        conflicting: List[Relationship] = []
        connections: List[Connection] = []
        n = len(self.bands)
        for i in range(n):
            for j in range(i + 1, n):
                c = float(corr[i, j])
                if abs(c) <= p.interaction_threshold:
                    continue
                rel = Relationship(i, j, c, kinds[i][j], float(trend[i, j]))
                relationships.append(rel)
                if c < p.conflict_threshold:
                    conflicting.append(rel)
                if energies[i] > p.connection_energy and energies[j] > p.connection_energy:
                    strength = abs(c) * float(min(energies[i], energies[j]))
                    connections.append(Connection(i, j, strength, kinds[i][j]))

        return RelationshipResult(
            matrix=matrix,
            relationships=tuple(relationships),
            conflicting_pairs=tuple(conflicting),
            dominant_bands=dominant,
            connections=tuple(connections),
            ready=True,
        )


# =============================================================================
# PHASE COHERENCE
# =============================================================================

def frame_phase_matrix(
    left: np.ndarray,
    right: np.ndarray,
    assignments: np.ndarray,
    band_count: int,
    window: Optional[np.ndarray] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Phase alignment of one frame.

    CONTRACT:
    - diagonal i: Re(sum L * conj(R)) / sqrt(sum |L|^2 * sum |R|^2) over
      the bins of band i (0 when either channel is empty)
    - off-diagonal (i, j): Re(u_L,i * conj(u_R,j)) where u is the unit
      phasor of the band's summed complex spectrum
    - second return value flags bands with energy in both channels

    Parameters:
        left: Left channel time samples (length fft_size)
        right: Right channel time samples
        assignments: Band index per bin (length fft_size // 2, NO_BAND outside)
        band_count: Number of bands
        window: Optional analysis window (length fft_size)

    Returns:
        Tuple of (matrix (band_count, band_count), active (band_count,) bool)
    """
    left = np.asarray(left, dtype=np.float64)
    right = np.asarray(right, dtype=np.float64)
    if window is not None:
        left = left * window
        right = right * window

    n_bins = len(assignments)
    spec_l = rfft(left)[:n_bins]
    spec_r = rfft(right)[:n_bins]

    valid = assignments != NO_BAND
    idx = assignments[valid]
    sl = spec_l[valid]
    sr = spec_r[valid]

    def band_sum(values):
        return np.bincount(idx, weights=values, minlength=band_count)

    with np.errstate(over='ignore', invalid='ignore'):
        cross = band_sum(np.real(sl * np.conj(sr)))
        power_l = band_sum(np.abs(sl) ** 2)
        power_r = band_sum(np.abs(sr) ** 2)
        denom = np.sqrt(power_l * power_r)
        active = np.isfinite(denom) & np.isfinite(cross) & (denom > 1e-20)
        diag = np.zeros(band_count)
        diag[active] = cross[active] / denom[active]

        phasor_l = band_sum(np.real(sl)) + 1j * band_sum(np.imag(sl))
        phasor_r = band_sum(np.real(sr)) + 1j * band_sum(np.imag(sr))
        mag_l = np.abs(phasor_l)
        mag_r = np.abs(phasor_r)
        unit_l = np.where(np.isfinite(mag_l) & (mag_l > 1e-20), phasor_l / np.maximum(mag_l, 1e-300), 0.0)
        unit_r = np.where(np.isfinite(mag_r) & (mag_r > 1e-20), phasor_r / np.maximum(mag_r, 1e-300), 0.0)

        matrix = np.real(unit_l[:, np.newaxis] * np.conj(unit_r[np.newaxis, :]))
    np.fill_diagonal(matrix, diag)
    # overflowed intermediates fall back to zero coherence
    matrix = np.nan_to_num(matrix, nan=0.0, posinf=0.0, neginf=0.0)
    return np.clip(matrix, -1.0, 1.0), active


@dataclass(frozen=True)
class PhaseResult:
    matrix: np.ndarray
    band_coherence: np.ndarray
    trend: np.ndarray
    overall_coherence: float
    problematic_regions: Tuple[int, ...]


class PhaseCoherenceAnalyzer:
    """
    Cross-channel phase coherence per band and between bands.

    Averages frame matrices over a window of recent frames (at least
    min_frames), symmetrizes, then smooths across cycles like the energy
    relationship matrix.
    """

    def __init__(
        self,
        mapper: BandMapper,
        params: Optional[PhaseParams] = None,
        smoothing: Optional[RelationshipParams] = None
    ) -> None:
        self.mapper = mapper
        self.params = params or PhaseParams()
        smoothing = smoothing or RelationshipParams()
        self.smoother = MatrixSmoother(
            smoothing.history_length,
            smoothing.smoothing_base,
            smoothing.smoothing_min_cycles,
            smoothing.trend_min_cycles,
        )
        self.frames: Deque[Tuple[np.ndarray, np.ndarray]] = deque()
        self._layout: Optional[Tuple[int, int]] = None
        self._window: Optional[np.ndarray] = None
        self.related = self._related_bands()

    def _related_bands(self) -> np.ndarray:
        """Mask of band pairs whose center ratio is near an integer."""
        centers = self.mapper.centers
        n = len(centers)
        related = np.zeros((n, n), dtype=bool)
        for i in range(n):
            for j in range(n):
                if i == j:
                    continue
                ratio = max(centers[i], centers[j]) / max(min(centers[i], centers[j]), 1e-12)
                related[i, j] = _near_integer(ratio, self.params.harmonic_tolerance)
        return related

    def frames_in_window(self, sample_rate: int, fft_size: int) -> int:
        return max(self.params.min_frames,
                   int(math.ceil(self.params.window_sec * sample_rate / float(fft_size))))

    def reset(self) -> None:
        self.frames.clear()
        self.smoother.reset()
        self._layout = None
        self._window = None

    def _configure(self, sample_rate: int, fft_size: int) -> None:
        layout = (int(sample_rate), int(fft_size))
        if layout == self._layout:
            return
        self._layout = layout
        self.frames = deque(maxlen=self.frames_in_window(sample_rate, fft_size))
        self.smoother.reset()
        self._window = get_window(self.params.fft_window, fft_size)

    def process(self, left: np.ndarray, right: np.ndarray, sample_rate: int, fft_size: int) -> PhaseResult:
        self._configure(sample_rate, fft_size)
        n = self.mapper.band_count
        assignments = self.mapper.bin_assignments(sample_rate, fft_size)
        self.frames.append(frame_phase_matrix(left, right, assignments, n, self._window))

        matrices = np.stack([m for m, _ in self.frames])
        actives = np.stack([a for _, a in self.frames]).astype(np.float64)

        averaged = matrices.mean(axis=0)
        # diagonal averages only over frames where the band carried energy
        active_count = actives.sum(axis=0)
        diag_sum = np.einsum('fii->i', matrices)
        diag = np.where(active_count > 0, diag_sum / np.maximum(active_count, 1.0), 0.0)
        np.fill_diagonal(averaged, diag)
        averaged = np.clip((averaged + averaged.T) / 2.0, -1.0, 1.0)

        smoothed = np.clip(self.smoother.push(averaged), -1.0, 1.0)
        trend = self.smoother.trend()

        self_coherence = np.diag(smoothed)
        band_coherence = np.array([
            (self_coherence[i] + smoothed[i, self.related[i]].sum()) / (1 + np.count_nonzero(self.related[i]))
            for i in range(n)
        ])

        has_energy = active_count > 0
        problematic = tuple(
            int(i) for i in np.flatnonzero(has_energy & (self_coherence < self.params.problem_coherence))
        )

        return PhaseResult(
            matrix=frozen_array(smoothed),
            band_coherence=frozen_array(band_coherence),
            trend=frozen_array(trend),
            overall_coherence=float(np.mean(self_coherence)) if n else 0.0,
            problematic_regions=problematic,
        )
