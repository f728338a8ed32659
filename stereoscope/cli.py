"""
stereoscope - Command Line Interface

Streams a WAV file through the analysis engine block by block, the same
way a live host would, and writes one JSON snapshot per block.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from stereoscope import audio_io, config
from stereoscope.engine import AnalysisEngine
from stereoscope.errors import ConfigurationError
from stereoscope.export import JsonLinesSink
from stereoscope.metrics import Metrics
from stereoscope.params import BandParams, EngineConfig


def build_config(args: argparse.Namespace) -> EngineConfig:
    """Engine configuration from parsed command line options."""
    return EngineConfig(
        bands=BandParams(
            band_count=args.bands,
            min_freq=args.min_freq,
            max_freq=args.max_freq,
            log_scale=not args.linear,
        )
    )


def analyze_file(
    file_path: Path,
    output_path: Optional[Path],
    engine_config: EngineConfig,
    fft_size: int = config.DEFAULT_FFT_SIZE,
    hop_size: Optional[int] = None,
    include_matrices: bool = False,
    verbose: bool = False
) -> Dict:
    """
    Run the engine over a whole file.

    Parameters:
        file_path: WAV file to analyze
        output_path: JSON lines file for per-block snapshots (None = no file)
        engine_config: Engine configuration
        fft_size: Block length in samples
        hop_size: Distance between blocks (default fft_size)
        include_matrices: Write relationship and phase matrices too
        verbose: Print progress messages

    Returns:
        Summary dict ('blocks', 'duration', 'integrated', 'max_true_peak',
        'total_clips', 'most_active_range', 'mean_correlation', 'mean_width')
    """
    left, right, sr = audio_io.load_stereo(file_path)
    engine = AnalysisEngine(engine_config)

    if verbose:
        print(f"\nProcessing: {file_path.name}")
        print("-" * 60)
        print(f"  Sample rate: {sr} Hz, duration: {len(left) / sr:.2f}s")

    sink = JsonLinesSink(output_path, include_matrices) if output_path else None
    last: Optional[Metrics] = None
    correlations: List[float] = []
    widths: List[float] = []
    try:
        for block in audio_io.iter_blocks(left, right, sr, fft_size, hop_size):
            last = engine.process_block(block)
            correlations.append(last.correlation)
            widths.append(last.stereo_width)
            if sink is not None:
                sink(last)
    finally:
        if sink is not None:
            sink.close()

    summary = {
        'file': file_path.name,
        'blocks': engine.block_count,
        'duration': len(left) / float(sr),
        'integrated': last.loudness.integrated if last else config.LUFS_FLOOR,
        'max_true_peak': engine.max_true_peak,
        'total_clips': engine.total_clip_count,
        'most_active_range': last.spectral.most_active_range if last else '',
        'mean_correlation': float(np.mean(correlations)) if correlations else 0.0,
        'mean_width': float(np.mean(widths)) if widths else 0.0,
    }
    if verbose:
        print(f"  Analyzed {summary['blocks']} blocks")
    return summary


def print_summary(summary: Dict) -> None:
    print(f"\n{summary['file']}")
    print("=" * 60)
    print(f"  Blocks:              {summary['blocks']}")
    print(f"  Integrated loudness: {summary['integrated']:.1f} LUFS")
    print(f"  Max true peak:       {summary['max_true_peak']:.3f}")
    print(f"  Clip events:         {summary['total_clips']}")
    print(f"  Mean correlation:    {summary['mean_correlation']:+.2f}")
    print(f"  Mean stereo width:   {summary['mean_width']:.1f}%")
    print(f"  Most active range:   {summary['most_active_range'] or '-'}")


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description='stereoscope - Streaming stereo analysis of audio files',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze a file, print a summary
  %(prog)s mix.wav

  # Write per-block metrics
  %(prog)s mix.wav --output mix_metrics.jsonl

  # 16 linear bands, 4096-sample blocks with 50% overlap
  %(prog)s mix.wav --bands 16 --linear --fft-size 4096 --hop-size 2048
        """
    )

    parser.add_argument('input', type=str, help='Input WAV file')
    parser.add_argument('--output', '-o', type=str, help='JSON lines output file')
    parser.add_argument(
        '--fft-size',
        type=int,
        default=config.DEFAULT_FFT_SIZE,
        choices=config.VALID_FFT_SIZES,
        help=f'Block length in samples (default: {config.DEFAULT_FFT_SIZE})'
    )
    parser.add_argument('--hop-size', type=int, help='Distance between blocks (default: fft size)')
    parser.add_argument(
        '--bands',
        type=int,
        default=config.BAND_COUNT,
        help=f'Number of frequency bands (default: {config.BAND_COUNT})'
    )
    parser.add_argument('--min-freq', type=float, default=config.MIN_FREQ_HZ,
                        help=f'Lowest band edge in Hz (default: {config.MIN_FREQ_HZ:g})')
    parser.add_argument('--max-freq', type=float, default=config.MAX_FREQ_HZ,
                        help=f'Highest band edge in Hz (default: {config.MAX_FREQ_HZ:g})')
    parser.add_argument('--linear', action='store_true', help='Linear instead of logarithmic bands')
    parser.add_argument('--matrices', action='store_true',
                        help='Include relationship and phase matrices in the output')
    parser.add_argument('--verbose', '-v', action='store_true', help='Print verbose progress messages')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    input_path = Path(args.input)
    if not input_path.is_file():
        print(f"ERROR: Input file does not exist: {input_path}", file=sys.stderr)
        return 1

    try:
        engine_config = build_config(args)
        summary = analyze_file(
            input_path,
            Path(args.output) if args.output else None,
            engine_config,
            fft_size=args.fft_size,
            hop_size=args.hop_size,
            include_matrices=args.matrices,
            verbose=args.verbose,
        )
    except ConfigurationError as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        return 2
    except (OSError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1

    print_summary(summary)
    if args.output:
        print(f"\nMetrics written to {args.output}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
