"""
Metrics Module

Immutable result types handed from the analysis thread to metric sinks.
A Metrics snapshot owns read-only copies of every array it carries, so a
sink may keep it for as long as it likes while the engine moves on.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np


def frozen_array(values, dtype=np.float64) -> np.ndarray:
    """Read-only copy of values."""
    arr = np.array(values, dtype=dtype, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class LoudnessValues:
    integrated: float
    short_term: float
    momentary: float


@dataclass(frozen=True)
class BandTrend:
    """One classified band: emerging, fading or stable."""
    band_index: int
    trend: float
    volatility: float
    energy: float


@dataclass(frozen=True)
class SpectralSummary:
    entropy: float = 0.0
    fluidity: float = 0.0
    density: float = 0.0
    center_of_mass: float = 0.0
    most_active_range: str = ''


@dataclass(frozen=True)
class RelationshipMatrix:
    """
    Smoothed band-pair relationships.

    correlation and trend are symmetric (n, n) arrays; kinds[i][j] is the
    relationship type label of the pair (diagonal label is 'self').
    """
    correlation: np.ndarray
    trend: np.ndarray
    kinds: Tuple[Tuple[str, ...], ...]

    @classmethod
    def empty(cls, band_count: int) -> 'RelationshipMatrix':
        kinds = tuple(
            tuple('self' if i == j else 'neutral' for j in range(band_count))
            for i in range(band_count)
        )
        return cls(
            correlation=frozen_array(np.zeros((band_count, band_count))),
            trend=frozen_array(np.zeros((band_count, band_count))),
            kinds=kinds,
        )

    @property
    def band_count(self) -> int:
        return self.correlation.shape[0]


@dataclass(frozen=True)
class Relationship:
    band_a: int
    band_b: int
    correlation: float
    kind: str
    trend: float = 0.0


@dataclass(frozen=True)
class Connection:
    band_a: int
    band_b: int
    strength: float
    kind: str


@dataclass(frozen=True)
class ClipEvent:
    channel: str
    position: int
    length: int


@dataclass(frozen=True)
class Peak:
    channel: str
    position: int
    value: float


@dataclass(frozen=True)
class Metrics:
    """
    Everything the engine knows after one block.

    loudness holds measured values; loudness_display holds the smoothed
    values meant for meters.
    """
    timestamp: float
    sample_rate: int
    fft_size: int
    block_index: int

    loudness: LoudnessValues
    loudness_display: LoudnessValues

    correlation: float
    stereo_width: float
    dynamic_range: float
    crest_factor: float
    true_peak: float
    peak_left: float
    peak_right: float
    spectral_centroid: float
    sub_bass_ratio: float
    clip_count: int
    clip_events: Tuple[ClipEvent, ...] = ()
    peaks: Tuple[Peak, ...] = ()

    band_energies: np.ndarray = field(default_factory=lambda: frozen_array([]))
    smoothed_energies: np.ndarray = field(default_factory=lambda: frozen_array([]))

    emerging: Tuple[BandTrend, ...] = ()
    fading: Tuple[BandTrend, ...] = ()
    stable: Tuple[BandTrend, ...] = ()
    trends_ready: bool = False
    spectral: SpectralSummary = field(default_factory=SpectralSummary)

    relationship_matrix: Optional[RelationshipMatrix] = None
    relationships: Tuple[Relationship, ...] = ()
    conflicting_pairs: Tuple[Relationship, ...] = ()
    dominant_bands: Tuple[int, ...] = ()
    connections: Tuple[Connection, ...] = ()

    phase_coherence: Optional[np.ndarray] = None
    band_coherence: np.ndarray = field(default_factory=lambda: frozen_array([]))
    phase_trend: Optional[np.ndarray] = None
    overall_coherence: float = 0.0
    problematic_regions: Tuple[int, ...] = ()

    silent: bool = False
