"""
stereoscope - Configuration

All tunable defaults of the analysis engine with documentation.
Every default value includes rationale. The frozen parameter groups in
stereoscope.params take their defaults from here.
"""

from typing import Dict, List, Tuple

# =============================================================================
# BLOCK / FFT PARAMETERS
# =============================================================================

# FFT sizes accepted for incoming blocks (samples)
# Why: powers of two from 1024 (~23ms at 44.1 kHz) to 16384 (~370ms) cover
#      everything from fast metering to high-resolution bass analysis
VALID_FFT_SIZES: Tuple[int, ...] = (1024, 2048, 4096, 8192, 16384)

# Default FFT size (samples)
# Why: 2048 at 44.1 kHz gives ~21.5 Hz bin spacing and ~46ms blocks,
#      fast enough for meters and fine enough for the 20 Hz band floor
DEFAULT_FFT_SIZE: int = 2048

# Default sample rate (Hz)
# Why: 44100 is the most common consumer rate; blocks carry their own rate
DEFAULT_SAMPLE_RATE: int = 44100

# Floor used when a dB spectrum contains -inf or NaN (dB)
# Why: -100 dB is below every realistic analyzer floor; bins at the floor
#      count as zero magnitude so silence has no band energy
DB_FLOOR: float = -100.0

# Window applied to time data before the phase FFT
# Why: Hann keeps sidelobe leakage low so band phasors stay inside their band
PHASE_WINDOW: str = 'hann'

# =============================================================================
# BAND PARAMETERS
# =============================================================================

# Number of analysis bands
# Why: 30 log-spaced bands over 20 Hz - 20 kHz is roughly one third-octave
#      per band, the resolution engineers read spectra at
BAND_COUNT: int = 30

# Lowest analyzed frequency (Hz)
# Why: 20 Hz is the conventional bottom of the audible range
MIN_FREQ_HZ: float = 20.0

# Highest analyzed frequency (Hz)
# Why: 20 kHz is the conventional top of the audible range
MAX_FREQ_HZ: float = 20000.0

# Logarithmic band spacing
# Why: pitch perception is logarithmic, linear bands would spend most
#      of the band budget above 5 kHz
LOG_SCALE: bool = True

# Reference tuning for note names (Hz)
# Why: A4 = 440 Hz concert pitch
A4_FREQ_HZ: float = 440.0

NOTE_NAMES: List[str] = ['C', 'C#', 'D', 'D#', 'E', 'F', 'F#', 'G', 'G#', 'A', 'A#', 'B']

# Named frequency ranges (upper edge exclusive, Hz)
# Why: the vocabulary mix engineers use when talking about a spectrum
FREQUENCY_RANGES: List[Tuple[float, str]] = [
    (60.0, 'Sub Bass'),
    (250.0, 'Bass'),
    (500.0, 'Low Mids'),
    (2000.0, 'Mid Range'),
    (4000.0, 'Upper Mids'),
    (10000.0, 'Presence'),
    (float('inf'), 'Air'),
]

# Epsilon floor for band energy normalization
# Why: avoids division by zero while being far below any audible band sum
BAND_ENERGY_EPSILON: float = 1e-12

# =============================================================================
# BLOCK METRIC PARAMETERS
# =============================================================================

# Clip threshold (absolute sample value)
# Why: 0.99 catches samples within ~0.09 dB of full scale
CLIP_THRESHOLD: float = 0.99

# Minimum consecutive over-threshold samples to count a clip
# Why: 3 samples debounces single-sample overs from inter-sample noise
CLIP_MIN_RUN: int = 3

# Cutoff for the sub-bass mono check (Hz)
# Why: below 100 Hz stereo content is inaudible as direction and harms
#      vinyl cutting and mono playback
SUB_BASS_CUTOFF_HZ: float = 100.0

# Threshold for significant sample peaks (absolute value)
# Why: 0.8 (~-2 dBFS) marks peaks worth showing on a waveform display
PEAK_THRESHOLD: float = 0.8

# Window applied to time data before time-domain metrics ('none' disables)
# Why: raw samples by default so peak and clip metrics see true sample values
TIME_WINDOW: str = 'none'

# =============================================================================
# LOUDNESS PARAMETERS
# =============================================================================

# Gating block duration (seconds)
# Why: 400ms is the momentary loudness window of gated loudness metering
LOUDNESS_BLOCK_SEC: float = 0.4

# Gating block overlap (fraction)
# Why: 75% overlap (stride = block / 4) as in gated loudness metering
LOUDNESS_OVERLAP: float = 0.75

# Short-term loudness window (seconds)
# Why: 3 seconds is the standard short-term window
SHORT_TERM_SEC: float = 3.0

# Rolling integration window (seconds)
# Why: 30 seconds keeps the per-sample power buffer around 11 MB at 48 kHz
#      while covering several phrases of music
INTEGRATION_WINDOW_SEC: float = 30.0

# Relative gate offset (LU)
# Why: -10 LU below the ungated level removes pauses and fades
GATE_OFFSET_LU: float = -10.0

# Silence floor (LUFS)
# Why: -70 LUFS is the absolute gate of gated loudness metering, used as
#      the sentinel for "no signal"
LUFS_FLOOR: float = -70.0

# Display smoothing factors (fraction moved toward the new value per block)
# Why: momentary reacts fastest, integrated is the calmest reading
DISPLAY_SMOOTHING: Dict[str, float] = {
    'momentary': 0.2,
    'short_term': 0.1,
    'integrated': 0.05,
}

# =============================================================================
# BAND TRACKER PARAMETERS
# =============================================================================

# EMA weight of the previous energy
# Why: 0.7 keeps bands readable at 20+ blocks/s without hiding transients
TRACKER_ALPHA: float = 0.7

# Band history length (blocks)
# Why: 200 blocks is ~9 seconds at 2048/44.1k, enough for migration views
TRACKER_HISTORY: int = 200

# =============================================================================
# TREND PARAMETERS
# =============================================================================

# Samples used for trend, volatility and classification
# Why: 10 blocks (~0.5s) is the shortest window with a meaningful slope
TREND_WINDOW: int = 10

EMERGING_TREND: float = 0.1
EMERGING_ENERGY: float = 0.2
FADING_TREND: float = -0.1
FADING_PEAK_ENERGY: float = 0.4
STABLE_TREND: float = 0.05
STABLE_VOLATILITY: float = 0.1
STABLE_ENERGY: float = 0.3

# Entropy history length for fluidity (blocks)
# Why: 30 blocks (~1.4s) tracks how quickly the spectral shape is moving
ENTROPY_HISTORY: int = 30

# Minimum entropy samples before fluidity is reported
FLUIDITY_MIN_SAMPLES: int = 5

# Scale applied to mean absolute entropy change before clamping to [0, 1]
# Why: entropy changes of 0.1 per block already read as "fully fluid"
FLUIDITY_SCALE: float = 10.0

# Energy above which a band counts toward spectral density
DENSITY_THRESHOLD: float = 0.1

# =============================================================================
# RELATIONSHIP PARAMETERS
# =============================================================================

# Minimum |correlation| for a pair to be an active relationship
# Why: 0.2 discards noise-level correlations of short histories
INTERACTION_THRESHOLD: float = 0.2

# Correlation below which a pair is reported as conflicting
CONFLICT_THRESHOLD: float = -0.4

# Relationship matrix smoothing window (analysis cycles)
# Why: 30 cycles (~1.4s) suppresses frame-to-frame jitter
RELATIONSHIP_HISTORY: int = 30

# Exponential base for smoothing weights (weight = base ** k)
# Why: 1.5 makes the newest cycle dominate while older cycles still count
SMOOTHING_BASE: float = 1.5

# Cycles required before exponential smoothing replaces the latest matrix
SMOOTHING_MIN_CYCLES: int = 3

# Cycles required before per-cell trends are reported
TREND_MIN_CYCLES: int = 5

# Minimum band history before correlations are computed
RELATIONSHIP_MIN_HISTORY: int = 5

# Tolerances for harmonic and semitone ratio matching
HARMONIC_TOLERANCE: float = 0.05
SEMITONE_TOLERANCE: float = 0.1

# Energy above which a band is reported as dominant
DOMINANT_ENERGY: float = 0.6

# Energy both bands need for a connection to be reported
CONNECTION_ENERGY: float = 0.1

# =============================================================================
# PHASE COHERENCE PARAMETERS
# =============================================================================

# Phase analysis window (seconds)
# Why: 2 seconds averages enough frames for stable phase alignment
PHASE_WINDOW_SEC: float = 2.0

# Minimum frames in the phase window regardless of FFT size
PHASE_MIN_FRAMES: int = 3

# Coherence below which a band is a problematic region
PROBLEM_COHERENCE: float = 0.4

# Ratio tolerance for harmonically related bands in per-band coherence
PHASE_HARMONIC_TOLERANCE: float = 0.1

# =============================================================================
# HISTORY / OUTPUT PARAMETERS
# =============================================================================

# Loudness, correlation and width display history (blocks)
# Why: 3600 entries is one minute at 60 updates per second
DISPLAY_HISTORY: int = 3600

# Spectrogram ring buffer length (frames)
# Why: 200 frames matches the band tracker history for aligned views
SPECTROGRAM_HISTORY: int = 200

# Inbox capacity of the analysis worker (blocks)
# Why: 2 keeps latency to at most one pending block; newest data wins
WORKER_QUEUE_CAPACITY: int = 2

# JSON schema version of exported snapshots
# Why: versioning lets consumers detect format changes
SCHEMA_VERSION: str = "1.0.0"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def blocks_per_second(fft_size: int = DEFAULT_FFT_SIZE,
                      sample_rate: int = DEFAULT_SAMPLE_RATE) -> float:
    """Analysis blocks delivered per second for a given FFT size."""
    return sample_rate / float(fft_size)


def is_valid_fft_size(fft_size: int) -> bool:
    """True if fft_size is one of VALID_FFT_SIZES."""
    return fft_size in VALID_FFT_SIZES


def validate_config() -> bool:
    """
    Validate configuration constants for consistency.

    Returns:
        True if config is valid

    Raises:
        ValueError: If configuration is invalid
    """
    if DEFAULT_FFT_SIZE not in VALID_FFT_SIZES:
        raise ValueError(f"DEFAULT_FFT_SIZE must be one of {VALID_FFT_SIZES}")

    if BAND_COUNT <= 0:
        raise ValueError("BAND_COUNT must be positive")

    if not (0.0 < MIN_FREQ_HZ < MAX_FREQ_HZ):
        raise ValueError("MIN_FREQ_HZ must be positive and below MAX_FREQ_HZ")

    if not (0.0 <= LOUDNESS_OVERLAP < 1.0):
        raise ValueError("LOUDNESS_OVERLAP must be in [0, 1)")

    if not (LOUDNESS_BLOCK_SEC <= SHORT_TERM_SEC <= INTEGRATION_WINDOW_SEC):
        raise ValueError("Loudness windows must satisfy block <= short-term <= integration")

    if GATE_OFFSET_LU >= 0:
        raise ValueError("GATE_OFFSET_LU must be negative")

    for name, factor in DISPLAY_SMOOTHING.items():
        if not (0.0 < factor <= 1.0):
            raise ValueError(f"DISPLAY_SMOOTHING['{name}'] must be in (0, 1]")

    if not (0.0 <= TRACKER_ALPHA <= 1.0):
        raise ValueError("TRACKER_ALPHA must be in [0, 1]")

    if TREND_WINDOW < 2:
        raise ValueError("TREND_WINDOW must be at least 2")

    if not (1 <= WORKER_QUEUE_CAPACITY <= 2):
        raise ValueError("WORKER_QUEUE_CAPACITY must be 1 or 2")

    return True


# Validate on import
validate_config()
