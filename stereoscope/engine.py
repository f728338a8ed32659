"""
Analysis Engine Module

One owned engine object per audio source. It holds every piece of mutable
analysis state (loudness history, band states, relationship matrices,
display histories) and turns each AudioBlock into an immutable Metrics
snapshot.

USAGE:
    from stereoscope import AnalysisEngine, AudioBlock

    engine = AnalysisEngine()
    metrics = engine.process_block(block)
    engine.reset()  # new source

CONTRACT:
- Construction validates the configuration; an invalid one raises
  ConfigurationError and no engine exists
- The band layout is fixed for the engine's lifetime
- process_block() is not thread-safe; run it from one thread (see
  stereoscope.worker for the threaded front end)
- reset() returns the engine to its freshly constructed state
"""

import warnings
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

import numpy as np

from stereoscope import kernel
from stereoscope.bands import BandMapper, FrequencyBand
from stereoscope.blocks import AudioBlock
from stereoscope.errors import DegenerateInputWarning
from stereoscope.loudness import LoudnessMeter
from stereoscope.metrics import ClipEvent, LoudnessValues, Metrics, Peak, frozen_array
from stereoscope.params import DEFAULT_CONFIG, EngineConfig, validate_config
from stereoscope.relationships import BandRelationshipAnalyzer, PhaseCoherenceAnalyzer
from stereoscope.tracker import BandEnergyTracker
from stereoscope.trends import SpectralMigrationAnalyzer


class AnalysisEngine:
    """Streaming stereo analysis engine."""

    def __init__(self, config: Optional[EngineConfig] = None) -> None:
        self.config = config or DEFAULT_CONFIG
        validate_config(self.config)

        self.mapper = BandMapper.from_params(self.config.bands)
        self.loudness = LoudnessMeter(self.config.loudness)
        self.tracker = BandEnergyTracker(self.mapper.band_count, self.config.tracker)
        self.trends = SpectralMigrationAnalyzer(self.mapper.bands, self.config.trends)
        self.relationships = BandRelationshipAnalyzer(self.mapper.bands, self.config.relationships)
        self.phase = PhaseCoherenceAnalyzer(self.mapper, self.config.phase, self.config.relationships)

        display_length = self.config.history.display_length
        self.loudness_history: Deque[LoudnessValues] = deque(maxlen=display_length)
        self.correlation_history: Deque[float] = deque(maxlen=display_length)
        self.width_history: Deque[float] = deque(maxlen=display_length)
        self.spectrogram: Deque[np.ndarray] = deque(maxlen=self.config.history.spectrogram_length)

        self.block_count = 0
        self.total_clip_count = 0
        self.max_true_peak = 0.0
        self._degenerate_warned = False

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def bands(self) -> Tuple[FrequencyBand, ...]:
        return self.mapper.bands

    @property
    def band_count(self) -> int:
        return self.mapper.band_count

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def reset(self) -> None:
        """Clear all analysis state; the configuration and band layout are kept."""
        self.loudness.reset()
        self.tracker.reset()
        self.trends.reset()
        self.relationships.reset()
        self.phase.reset()
        self.loudness_history.clear()
        self.correlation_history.clear()
        self.width_history.clear()
        self.spectrogram.clear()
        self.block_count = 0
        self.total_clip_count = 0
        self.max_true_peak = 0.0
        self._degenerate_warned = False

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    def _check_degenerate(self, block: AudioBlock) -> bool:
        degenerate = block.is_silent or block.had_non_finite
        if not degenerate:
            self._degenerate_warned = False
            return False
        if not self._degenerate_warned:
            reason = 'non-finite samples were replaced' if block.had_non_finite else 'block is silent'
            warnings.warn(
                f"Degenerate input at block {self.block_count}: {reason}; reporting floor values",
                DegenerateInputWarning,
                stacklevel=3,
            )
            self._degenerate_warned = True
        return block.is_silent

    def process_block(self, block: AudioBlock) -> Metrics:
        """
        Run the full analysis for one block.

        Parameters:
            block: AudioBlock from the host

        Returns:
            Immutable Metrics snapshot for this block
        """
        silent = self._check_degenerate(block)
        block_params = self.config.block

        instant: Dict = kernel.compute_block_metrics(
            block.left, block.right, block.freq_left, block.freq_right,
            block.sample_rate, block.fft_size, self.mapper,
            clip_threshold=block_params.clip_threshold,
            clip_min_run=block_params.clip_min_run,
            sub_bass_cutoff_hz=block_params.sub_bass_cutoff_hz,
            peak_threshold=block_params.peak_threshold,
            time_window=block_params.time_window,
        )

        loudness = self.loudness.process(block.left, block.right, block.sample_rate)
        smoothed = self.tracker.update(instant['band_energies'])
        trend_result = self.trends.analyze(self.tracker)
        relation_result = self.relationships.analyze(self.tracker)
        phase_result = self.phase.process(block.left, block.right, block.sample_rate, block.fft_size)

        self.loudness_history.append(loudness)
        self.correlation_history.append(instant['correlation'])
        self.width_history.append(instant['stereo_width'])
        if self.spectrogram and len(self.spectrogram[-1]) != block.fft_size // 2:
            self.spectrogram.clear()
        self.spectrogram.append(frozen_array((block.freq_left + block.freq_right) / 2.0))
        self.total_clip_count += instant['clip_count']
        self.max_true_peak = max(self.max_true_peak, instant['true_peak'])

        metrics = Metrics(
            timestamp=float(block.timestamp),
            sample_rate=block.sample_rate,
            fft_size=block.fft_size,
            block_index=self.block_count,
            loudness=loudness,
            loudness_display=self.loudness.display_values(),
            correlation=instant['correlation'],
            stereo_width=instant['stereo_width'],
            dynamic_range=instant['dynamic_range'],
            crest_factor=instant['crest_factor'],
            true_peak=instant['true_peak'],
            peak_left=instant['peak_left'],
            peak_right=instant['peak_right'],
            spectral_centroid=instant['spectral_centroid'],
            sub_bass_ratio=instant['sub_bass_ratio'],
            clip_count=instant['clip_count'],
            clip_events=tuple(ClipEvent(**e) for e in instant['clip_events']),
            peaks=tuple(Peak(**p) for p in instant['peaks']),
            band_energies=frozen_array(instant['band_energies']),
            smoothed_energies=frozen_array(smoothed),
            emerging=trend_result.emerging,
            fading=trend_result.fading,
            stable=trend_result.stable,
            trends_ready=trend_result.ready,
            spectral=trend_result.summary,
            relationship_matrix=relation_result.matrix,
            relationships=relation_result.relationships,
            conflicting_pairs=relation_result.conflicting_pairs,
            dominant_bands=relation_result.dominant_bands,
            connections=relation_result.connections,
            phase_coherence=phase_result.matrix,
            band_coherence=phase_result.band_coherence,
            phase_trend=phase_result.trend,
            overall_coherence=phase_result.overall_coherence,
            problematic_regions=phase_result.problematic_regions,
            silent=silent,
        )
        self.block_count += 1
        return metrics

    # -------------------------------------------------------------------------
    # History access
    # -------------------------------------------------------------------------

    def spectrogram_frames(self) -> np.ndarray:
        """Spectrogram history as (frames, bins), oldest first."""
        if not self.spectrogram:
            return np.zeros((0, 0))
        return np.stack(self.spectrogram)

    def display_history(self) -> Dict[str, List]:
        """Copies of the loudness, correlation and width histories."""
        return {
            'loudness': list(self.loudness_history),
            'correlation': list(self.correlation_history),
            'stereo_width': list(self.width_history),
        }
