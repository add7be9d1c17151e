"""CLI entry point: python -m pitch_tempo <audio_file>"""

import argparse
import logging
import statistics
import sys
import warnings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m pitch_tempo",
        description="Estimate pitch and session tempo of a recording.",
    )
    parser.add_argument("audio_file", help="wav/flac/ogg file to analyze")
    parser.add_argument("--min-bpm", type=float, default=None, help="lowest tempo to report (default 40)")
    parser.add_argument("--max-bpm", type=float, default=None, help="highest tempo to report (default 200)")
    parser.add_argument("--frame-size", type=int, default=None, help="analysis frame in samples (default 1024)")
    parser.add_argument("--env-file", default=None, help=".env file with PITCH_TEMPO_* overrides")
    parser.add_argument("--clicks", metavar="OUT", default=None,
                        help="write the recording mixed with metronome clicks to OUT")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    from pitch_tempo.analyze import analyze_samples
    from pitch_tempo.config import AnalysisConfig
    from pitch_tempo.devices.audiofile import load_audio

    samples, sample_rate = load_audio(args.audio_file)

    overrides = {}
    if args.min_bpm is not None:
        overrides["min_bpm"] = args.min_bpm
    if args.max_bpm is not None:
        overrides["max_bpm"] = args.max_bpm
    if args.frame_size is not None:
        overrides["frame_size"] = args.frame_size
    try:
        config = AnalysisConfig.from_env(sample_rate, env_file=args.env_file, **overrides)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    print(f"Analyzing {args.audio_file} ({len(samples) / sample_rate:.1f}s at {sample_rate} Hz)...")
    report = analyze_samples(samples, sample_rate, config)

    print("\n--- Tempo ---")
    tempo = report.tempo
    if tempo.bpm is not None:
        print(f"BPM: {tempo.bpm} ({tempo.confidence:.0%} confidence)")
        print(f"First beat at {tempo.beat_offset_seconds:.3f}s")
        for c in tempo.candidates[:4]:
            print(f"  candidate {c.bpm:6.1f} BPM  strength {c.strength:.3g}")
    elif report.duration_seconds < config.min_session_seconds:
        print(f"No tempo: recording shorter than {config.min_session_seconds:.0f}s")
    else:
        print("No tempo: no clear periodicity")

    print("\n--- Pitch ---")
    voiced = len(report.pitches)
    print(f"Voiced hops: {voiced}/{report.hops}")
    if voiced:
        median_hz = statistics.median(p.freq_hz for _, p in report.pitches)
        names = [p.note_name for _, p in report.pitches]
        most_common = max(set(names), key=names.count)
        print(f"Median f0: {median_hz:.1f} Hz")
        print(f"Most frequent note: {most_common}")

    if args.clicks:
        if tempo.bpm is None:
            warnings.warn("--clicks needs a tempo; nothing written")
        else:
            from pitch_tempo.devices.audiofile import render_click_track, write_audio
            from pitch_tempo.metronome import schedule_clicks

            times = schedule_clicks(
                tempo.bpm, 0.0, report.duration_seconds, tempo.beat_offset_seconds,
            )
            track = render_click_track(times, sample_rate, len(samples))
            write_audio(args.clicks, samples + track, sample_rate)
            print(f"\nWrote {len(times)} clicks to {args.clicks}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
