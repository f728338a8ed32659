"""
Audio I/O Module

Loads stereo WAV files and cuts them into AudioBlocks for offline runs of
the engine. All operations are deterministic and reproducible.
"""

from pathlib import Path
from typing import Iterator, Optional, Tuple, Union

import numpy as np
from scipy.io import wavfile

from stereoscope import config
from stereoscope.blocks import AudioBlock


def load_stereo(file_path: Union[str, Path]) -> Tuple[np.ndarray, np.ndarray, int]:
    """
    Load a WAV file as two float channels.

    Mono files are duplicated onto both channels; files with more than two
    channels keep the first two.

    Parameters:
        file_path: Path to a WAV file

    Returns:
        Tuple of (left, right, sample_rate), channels as float64 in [-1.0, 1.0]

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If the sample format is unsupported or the file is empty
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Audio file not found: {path}")

    sr, audio = wavfile.read(str(path))

    # Convert to float and normalize based on dtype
    if audio.dtype == np.int16:
        audio = audio.astype(np.float64) / 32768.0
    elif audio.dtype == np.int32:
        audio = audio.astype(np.float64) / 2147483648.0
    elif audio.dtype == np.uint8:
        audio = (audio.astype(np.float64) - 128.0) / 128.0
    elif audio.dtype in (np.float32, np.float64):
        audio = audio.astype(np.float64)
    else:
        raise ValueError(f"Unsupported audio dtype: {audio.dtype}")

    if audio.ndim == 1:
        left = right = audio
    elif audio.ndim == 2:
        left = audio[:, 0]
        right = audio[:, 1] if audio.shape[1] > 1 else audio[:, 0]
    else:
        raise ValueError(f"Unexpected audio shape: {audio.shape}")

    if len(left) == 0:
        raise ValueError("Audio file contains no samples")

    return np.ascontiguousarray(left), np.ascontiguousarray(right), int(sr)


def compute_block_count(num_samples: int, fft_size: int, hop_size: int) -> int:
    """Number of complete blocks; a trailing partial block is not analyzed."""
    if num_samples < fft_size:
        return 0
    return 1 + (num_samples - fft_size) // hop_size


def iter_blocks(
    left: np.ndarray,
    right: np.ndarray,
    sample_rate: int,
    fft_size: int = config.DEFAULT_FFT_SIZE,
    hop_size: Optional[int] = None,
    window: str = config.PHASE_WINDOW
) -> Iterator[AudioBlock]:
    """
    Yield consecutive AudioBlocks with derived spectra.

    Parameters:
        left: Left channel samples
        right: Right channel samples (same length as left)
        sample_rate: Sample rate in Hz
        fft_size: Block length, one of config.VALID_FFT_SIZES
        hop_size: Distance between block starts (default fft_size, no overlap)
        window: Window used for the block spectra

    Yields:
        AudioBlock with timestamp = start sample / sample_rate
    """
    if len(left) != len(right):
        raise ValueError(f"Channel lengths differ: {len(left)} vs {len(right)}")
    if not config.is_valid_fft_size(fft_size):
        raise ValueError(f"fft_size must be one of {config.VALID_FFT_SIZES}, got {fft_size}")
    hop_size = hop_size or fft_size
    if hop_size <= 0:
        raise ValueError(f"hop_size must be positive, got {hop_size}")

    for i in range(compute_block_count(len(left), fft_size, hop_size)):
        start = i * hop_size
        yield AudioBlock.from_time_data(
            left[start:start + fft_size],
            right[start:start + fft_size],
            sample_rate,
            timestamp=start / float(sample_rate),
            window=window,
        )
