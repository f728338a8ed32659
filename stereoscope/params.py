"""
Engine Parameters Module - All Tunable Constants

Frozen parameter groups handed to the analysis components. Defaults come
from stereoscope.config; an engine is built from one EngineConfig and keeps
it for its whole lifetime (a different band layout needs a new engine).

USAGE:
    from stereoscope.params import EngineConfig, BandParams, DEFAULT_CONFIG

    # Use default config
    config = DEFAULT_CONFIG

    # Create custom config
    custom = EngineConfig(
        bands=BandParams(band_count=24),
        tracker=TrackerParams(alpha=0.8)
    )
"""

from dataclasses import dataclass, field
from typing import Dict

from stereoscope import config as cfg
from stereoscope.errors import ConfigurationError


@dataclass(frozen=True)
class BandParams:
    """
    Band layout parameters.

    Attributes:
        band_count: Number of bands (default 30)
        min_freq: Lower edge of the first band in Hz (default 20)
        max_freq: Upper edge of the last band in Hz (default 20000)
        log_scale: Logarithmic (True) or linear (False) spacing
    """
    band_count: int = cfg.BAND_COUNT
    min_freq: float = cfg.MIN_FREQ_HZ
    max_freq: float = cfg.MAX_FREQ_HZ
    log_scale: bool = cfg.LOG_SCALE


@dataclass(frozen=True)
class BlockParams:
    """
    Per-block metric parameters.

    Attributes:
        clip_threshold: Absolute sample value counted as clipping (default 0.99)
        clip_min_run: Consecutive samples needed for one clip (default 3)
        sub_bass_cutoff_hz: Upper frequency of the sub-bass mono check (default 100)
        peak_threshold: Absolute value for significant sample peaks (default 0.8)
        time_window: Window applied to time data before time-domain metrics,
            'none' to analyze raw samples (default 'none')
    """
    clip_threshold: float = cfg.CLIP_THRESHOLD
    clip_min_run: int = cfg.CLIP_MIN_RUN
    sub_bass_cutoff_hz: float = cfg.SUB_BASS_CUTOFF_HZ
    peak_threshold: float = cfg.PEAK_THRESHOLD
    time_window: str = cfg.TIME_WINDOW


@dataclass(frozen=True)
class LoudnessParams:
    """
    Gated loudness parameters.

    Attributes:
        block_sec: Gating block duration (default 0.4s)
        overlap: Gating block overlap fraction (default 0.75, stride = block / 4)
        short_term_sec: Short-term window (default 3.0s)
        integration_window_sec: Rolling window kept for integrated loudness (default 30s)
        gate_offset_lu: Relative gate below the ungated level (default -10 LU)
        floor_lufs: Silence sentinel (default -70 LUFS)
        momentary_smoothing: Display smoothing factor for momentary (default 0.2)
        short_term_smoothing: Display smoothing factor for short-term (default 0.1)
        integrated_smoothing: Display smoothing factor for integrated (default 0.05)
    """
    block_sec: float = cfg.LOUDNESS_BLOCK_SEC
    overlap: float = cfg.LOUDNESS_OVERLAP
    short_term_sec: float = cfg.SHORT_TERM_SEC
    integration_window_sec: float = cfg.INTEGRATION_WINDOW_SEC
    gate_offset_lu: float = cfg.GATE_OFFSET_LU
    floor_lufs: float = cfg.LUFS_FLOOR
    momentary_smoothing: float = cfg.DISPLAY_SMOOTHING['momentary']
    short_term_smoothing: float = cfg.DISPLAY_SMOOTHING['short_term']
    integrated_smoothing: float = cfg.DISPLAY_SMOOTHING['integrated']

    def get_smoothing(self) -> Dict[str, float]:
        """Get display smoothing factors as a dictionary."""
        return {
            'momentary': self.momentary_smoothing,
            'short_term': self.short_term_smoothing,
            'integrated': self.integrated_smoothing,
        }


@dataclass(frozen=True)
class TrackerParams:
    """
    Band energy tracker parameters.

    Attributes:
        alpha: EMA weight of the previous energy (default 0.7)
        history_length: Per-band history ring length (default 200)
    """
    alpha: float = cfg.TRACKER_ALPHA
    history_length: int = cfg.TRACKER_HISTORY


@dataclass(frozen=True)
class TrendParams:
    """
    Trend classification and spectral statistics parameters.

    Attributes:
        window: History samples used per band (default 10)
        emerging_trend / emerging_energy: Emerging thresholds (0.1 / 0.2)
        fading_trend / fading_peak_energy: Fading thresholds (-0.1 / 0.4)
        stable_trend / stable_volatility / stable_energy: Stable thresholds (0.05 / 0.1 / 0.3)
        entropy_history: Entropy samples kept for fluidity (default 30)
        fluidity_min_samples: Entropy samples needed for fluidity (default 5)
        fluidity_scale: Multiplier on mean |delta entropy| (default 10)
        density_threshold: Energy counted toward density (default 0.1)
    """
    window: int = cfg.TREND_WINDOW
    emerging_trend: float = cfg.EMERGING_TREND
    emerging_energy: float = cfg.EMERGING_ENERGY
    fading_trend: float = cfg.FADING_TREND
    fading_peak_energy: float = cfg.FADING_PEAK_ENERGY
    stable_trend: float = cfg.STABLE_TREND
    stable_volatility: float = cfg.STABLE_VOLATILITY
    stable_energy: float = cfg.STABLE_ENERGY
    entropy_history: int = cfg.ENTROPY_HISTORY
    fluidity_min_samples: int = cfg.FLUIDITY_MIN_SAMPLES
    fluidity_scale: float = cfg.FLUIDITY_SCALE
    density_threshold: float = cfg.DENSITY_THRESHOLD


@dataclass(frozen=True)
class RelationshipParams:
    """
    Cross-band relationship parameters.

    Attributes:
        interaction_threshold: Minimum |correlation| of an active pair (default 0.2)
        conflict_threshold: Correlation below which a pair conflicts (default -0.4)
        history_length: Smoothing window in analysis cycles (default 30)
        smoothing_base: Weight base, weight = base ** k (default 1.5)
        smoothing_min_cycles: Cycles before smoothing applies (default 3)
        trend_min_cycles: Cycles before per-cell trends are reported (default 5)
        min_history: Band history needed before correlating (default 5)
        harmonic_tolerance: Distance of a ratio from an integer (default 0.05)
        semitone_tolerance: Distance of 12*log2(ratio) from an integer (default 0.1)
        dominant_energy: Energy of a dominant band (default 0.6)
        connection_energy: Energy both bands of a connection need (default 0.1)
    """
    interaction_threshold: float = cfg.INTERACTION_THRESHOLD
    conflict_threshold: float = cfg.CONFLICT_THRESHOLD
    history_length: int = cfg.RELATIONSHIP_HISTORY
    smoothing_base: float = cfg.SMOOTHING_BASE
    smoothing_min_cycles: int = cfg.SMOOTHING_MIN_CYCLES
    trend_min_cycles: int = cfg.TREND_MIN_CYCLES
    min_history: int = cfg.RELATIONSHIP_MIN_HISTORY
    harmonic_tolerance: float = cfg.HARMONIC_TOLERANCE
    semitone_tolerance: float = cfg.SEMITONE_TOLERANCE
    dominant_energy: float = cfg.DOMINANT_ENERGY
    connection_energy: float = cfg.CONNECTION_ENERGY


@dataclass(frozen=True)
class PhaseParams:
    """
    Phase coherence parameters.

    Attributes:
        window_sec: Frames averaged per coherence estimate, in seconds (default 2.0)
        min_frames: Lower bound on frames averaged (default 3)
        problem_coherence: Coherence below which a band is problematic (default 0.4)
        harmonic_tolerance: Ratio tolerance for related bands (default 0.1)
        fft_window: Window applied before the phase FFT (default 'hann')
    """
    window_sec: float = cfg.PHASE_WINDOW_SEC
    min_frames: int = cfg.PHASE_MIN_FRAMES
    problem_coherence: float = cfg.PROBLEM_COHERENCE
    harmonic_tolerance: float = cfg.PHASE_HARMONIC_TOLERANCE
    fft_window: str = cfg.PHASE_WINDOW


@dataclass(frozen=True)
class HistoryParams:
    """
    Display history parameters.

    Attributes:
        display_length: Loudness / correlation / width history (default 3600)
        spectrogram_length: Spectrogram frames kept (default 200)
    """
    display_length: int = cfg.DISPLAY_HISTORY
    spectrogram_length: int = cfg.SPECTROGRAM_HISTORY


@dataclass(frozen=True)
class WorkerParams:
    """
    Analysis worker parameters.

    Attributes:
        queue_capacity: Pending blocks held before the oldest is replaced (1 or 2)
        poll_interval_sec: Inbox poll timeout of the worker loop (default 0.25s)
    """
    queue_capacity: int = cfg.WORKER_QUEUE_CAPACITY
    poll_interval_sec: float = 0.25


@dataclass(frozen=True)
class EngineConfig:
    """
    Complete engine configuration aggregating all parameter groups.

    Example usage:
        config = EngineConfig()  # All defaults
        config = EngineConfig(bands=BandParams(band_count=16, log_scale=False))
    """
    bands: BandParams = field(default_factory=BandParams)
    block: BlockParams = field(default_factory=BlockParams)
    loudness: LoudnessParams = field(default_factory=LoudnessParams)
    tracker: TrackerParams = field(default_factory=TrackerParams)
    trends: TrendParams = field(default_factory=TrendParams)
    relationships: RelationshipParams = field(default_factory=RelationshipParams)
    phase: PhaseParams = field(default_factory=PhaseParams)
    history: HistoryParams = field(default_factory=HistoryParams)
    worker: WorkerParams = field(default_factory=WorkerParams)

    def to_dict(self) -> Dict:
        """
        Export all parameters as a flat dictionary for JSON serialization.

        Returns:
            Dictionary with all parameter values
        """
        return {
            # Band params
            'band_count': self.bands.band_count,
            'min_freq': self.bands.min_freq,
            'max_freq': self.bands.max_freq,
            'log_scale': self.bands.log_scale,

            # Block params
            'clip_threshold': self.block.clip_threshold,
            'clip_min_run': self.block.clip_min_run,
            'sub_bass_cutoff_hz': self.block.sub_bass_cutoff_hz,
            'peak_threshold': self.block.peak_threshold,
            'time_window': self.block.time_window,

            # Loudness params
            'loudness_block_sec': self.loudness.block_sec,
            'loudness_overlap': self.loudness.overlap,
            'short_term_sec': self.loudness.short_term_sec,
            'integration_window_sec': self.loudness.integration_window_sec,
            'gate_offset_lu': self.loudness.gate_offset_lu,
            'floor_lufs': self.loudness.floor_lufs,
            'display_smoothing': self.loudness.get_smoothing(),

            # Tracker params
            'tracker_alpha': self.tracker.alpha,
            'tracker_history_length': self.tracker.history_length,

            # Trend params
            'trend_window': self.trends.window,
            'entropy_history': self.trends.entropy_history,
            'density_threshold': self.trends.density_threshold,

            # Relationship params
            'interaction_threshold': self.relationships.interaction_threshold,
            'conflict_threshold': self.relationships.conflict_threshold,
            'relationship_history_length': self.relationships.history_length,
            'smoothing_base': self.relationships.smoothing_base,

            # Phase params
            'phase_window_sec': self.phase.window_sec,
            'phase_min_frames': self.phase.min_frames,
            'problem_coherence': self.phase.problem_coherence,

            # History params
            'display_history_length': self.history.display_length,
            'spectrogram_history_length': self.history.spectrogram_length,

            # Worker params
            'queue_capacity': self.worker.queue_capacity,
        }


# Default configuration instance
DEFAULT_CONFIG = EngineConfig()


def validate_band_params(params: BandParams) -> bool:
    """
    Validate a band layout.

    Raises:
        ConfigurationError: If band_count <= 0, min_freq >= max_freq, or
            min_freq <= 0 under logarithmic spacing
    """
    if params.band_count <= 0:
        raise ConfigurationError(f"band_count must be positive, got {params.band_count}")
    if params.min_freq >= params.max_freq:
        raise ConfigurationError(
            f"min_freq must be below max_freq, got {params.min_freq} >= {params.max_freq}"
        )
    if params.log_scale and params.min_freq <= 0:
        raise ConfigurationError("min_freq must be positive for logarithmic spacing")
    if params.min_freq < 0:
        raise ConfigurationError("min_freq must not be negative")
    return True


def validate_config(config: EngineConfig) -> bool:
    """
    Validate configuration parameters for consistency.

    Parameters:
        config: EngineConfig instance to validate

    Returns:
        True if config is valid

    Raises:
        ConfigurationError: If configuration is invalid
    """
    validate_band_params(config.bands)

    # Block metrics
    if not (0.0 < config.block.clip_threshold <= 1.0):
        raise ConfigurationError("clip_threshold must be in (0, 1]")
    if config.block.clip_min_run < 1:
        raise ConfigurationError("clip_min_run must be at least 1")
    if config.block.sub_bass_cutoff_hz <= 0:
        raise ConfigurationError("sub_bass_cutoff_hz must be positive")

    # Loudness windows
    loud = config.loudness
    if loud.block_sec <= 0:
        raise ConfigurationError("loudness block_sec must be positive")
    if not (0.0 <= loud.overlap < 1.0):
        raise ConfigurationError("loudness overlap must be in [0, 1)")
    if loud.short_term_sec < loud.block_sec:
        raise ConfigurationError("short_term_sec must be at least block_sec")
    if loud.integration_window_sec < loud.short_term_sec:
        raise ConfigurationError("integration_window_sec must be at least short_term_sec")
    if loud.gate_offset_lu >= 0:
        raise ConfigurationError("gate_offset_lu must be negative")
    for name, factor in loud.get_smoothing().items():
        if not (0.0 < factor <= 1.0):
            raise ConfigurationError(f"{name}_smoothing must be in (0, 1]")

    # Tracker
    if not (0.0 <= config.tracker.alpha <= 1.0):
        raise ConfigurationError("tracker alpha must be in [0, 1]")
    if config.tracker.history_length < 1:
        raise ConfigurationError("tracker history_length must be positive")

    # Trends
    if config.trends.window < 2:
        raise ConfigurationError("trend window must be at least 2")
    if config.trends.window > config.tracker.history_length:
        raise ConfigurationError("trend window cannot exceed tracker history_length")
    if config.trends.entropy_history < 2:
        raise ConfigurationError("entropy_history must be at least 2")

    # Relationships
    rel = config.relationships
    if not (0.0 <= rel.interaction_threshold <= 1.0):
        raise ConfigurationError("interaction_threshold must be in [0, 1]")
    if rel.history_length < 1:
        raise ConfigurationError("relationship history_length must be positive")
    if rel.smoothing_base <= 0:
        raise ConfigurationError("smoothing_base must be positive")
    if rel.min_history < 2:
        raise ConfigurationError("relationship min_history must be at least 2")

    # Phase
    if config.phase.window_sec <= 0:
        raise ConfigurationError("phase window_sec must be positive")
    if config.phase.min_frames < 1:
        raise ConfigurationError("phase min_frames must be positive")

    # Histories
    if config.history.display_length < 1 or config.history.spectrogram_length < 1:
        raise ConfigurationError("display and spectrogram history lengths must be positive")

    # Worker
    if not (1 <= config.worker.queue_capacity <= 2):
        raise ConfigurationError("queue_capacity must be 1 or 2")

    return True


# Validate default config on import
validate_config(DEFAULT_CONFIG)
