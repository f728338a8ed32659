"""
stereoscope - Streaming Stereo Audio Analysis Engine

This package contains the modules of the real-time analysis engine:
- blocks: AudioBlock input frames
- bands: Frequency band layout and bin-to-band mapping
- kernel: Per-block metric functions (correlation, dynamics, width, clipping, spectra)
- loudness: Gated momentary / short-term / integrated loudness
- tracker: Smoothed per-band energy with bounded history
- trends: Trend classification and spectral statistics
- relationships: Cross-band energy relationships and phase coherence
- engine: Owned engine object tying the components together
- worker: Threaded front end with a latest-wins inbox and metric sinks
- export: JSON serialization and file sink
- audio_io: WAV loading and block slicing for offline runs
- cli: Command line front end
"""

from stereoscope.blocks import AudioBlock
from stereoscope.engine import AnalysisEngine
from stereoscope.errors import ConfigurationError, DegenerateInputWarning, InsufficientHistoryWarning
from stereoscope.metrics import Metrics
from stereoscope.params import DEFAULT_CONFIG, EngineConfig
from stereoscope.worker import AnalysisWorker

__version__ = "1.0.0"

__all__ = [
    'AnalysisEngine',
    'AnalysisWorker',
    'AudioBlock',
    'ConfigurationError',
    'DEFAULT_CONFIG',
    'DegenerateInputWarning',
    'EngineConfig',
    'InsufficientHistoryWarning',
    'Metrics',
]
