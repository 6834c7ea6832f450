#!/usr/bin/env python3
"""Background service that runs the subtitle generator periodically."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Callable, List, Optional

try:
    import subtitle_generator  # type: ignore
except ImportError:  # pragma: no cover
    TOOLS_DIR = Path(__file__).resolve().parents[1] / "tools"
    if str(TOOLS_DIR) not in sys.path:
        sys.path.insert(0, str(TOOLS_DIR))
    import subtitle_generator  # type: ignore

from generator_config import DEFAULT_GENERATED_KEYWORD, DEFAULT_IGNORE_DIRS, DEFAULT_REQUEST_TIMEOUT, DEFAULT_VIDEO_FORMATS

LOGGER = logging.getLogger("subtitle_service")

# Exit codes that will not change by retrying with the same arguments.
FATAL_EXIT_CODES = {2}


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Automatic subtitle generation service")
    parser.add_argument("root", type=Path, help="Root directory of the media library")
    parser.add_argument("--whisper-ip", type=str, default="localhost", help="whisper-asr-webservice IP address")
    parser.add_argument("--whisper-port", type=int, default=9000, help="whisper-asr-webservice port")
    parser.add_argument("--video-formats", type=str, default=",".join(DEFAULT_VIDEO_FORMATS), help="Comma-separated list of video formats")
    parser.add_argument("--ignore-dirs", type=str, default=",".join(sorted(DEFAULT_IGNORE_DIRS)), help="Comma-separated list of directory names to ignore")
    parser.add_argument("--subtitle-language", type=str, default="en", help="Target language for generated subtitles")
    parser.add_argument("--generated-keyword", type=str, default=DEFAULT_GENERATED_KEYWORD, help="Keyword added to generated subtitle file names")
    parser.add_argument("--timeout", type=float, default=DEFAULT_REQUEST_TIMEOUT, help="HTTP timeout in seconds for one transcription request")
    parser.add_argument("--interval", type=int, default=3600, help="Seconds between the start of two cycles")
    parser.add_argument("--days", type=float, help="Only consider files and directories changed in the last DAYS days")
    parser.add_argument("--check-audio", action="store_true", help="Skip videos whose first audio track is in the target language")
    parser.add_argument("--extract-audio", action="store_true", help="Upload only the first audio track")
    parser.add_argument("--dry-run", action="store_true", help="Log changes instead of making them")
    parser.add_argument("--one-shot", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--log-file", type=Path, help="Optional log file for service output")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def build_generator_args(args: argparse.Namespace) -> List[str]:
    """Translate service options into subtitle_generator command-line arguments."""
    cmd: List[str] = [
        "--start-dir",
        str(args.root.resolve()),
        "--whisper-ip",
        args.whisper_ip,
        "--whisper-port",
        str(args.whisper_port),
        "--video-formats",
        args.video_formats,
        "--ignore-dirs",
        args.ignore_dirs,
        "--subtitle-language",
        args.subtitle_language,
        "--generated-keyword",
        args.generated_keyword,
        "--timeout",
        str(args.timeout),
    ]
    if args.days:
        cmd += ["--days", str(args.days)]
    if args.check_audio:
        cmd.append("--check-audio")
    if args.extract_audio:
        cmd.append("--extract-audio")
    if args.dry_run:
        cmd.append("--dry-run")
    return cmd


def run_cycle(generator_args: List[str]) -> int:
    LOGGER.debug("Invoking subtitle_generator with args: %s", generator_args)
    return subtitle_generator.run(generator_args)


def seconds_until_next_cycle(started: float, interval: float, now: float) -> float:
    return max(0.0, started + interval - now)


def serve(
    generator_args: List[str],
    interval: float,
    one_shot: bool = False,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    cycle = 0
    while True:
        cycle += 1
        started = clock()
        exit_code = run_cycle(generator_args)
        elapsed = clock() - started

        if exit_code == 0:
            LOGGER.info("Cycle %d completed in %.0fs", cycle, elapsed)
        else:
            LOGGER.error("Cycle %d: subtitle_generator exited with code %s", cycle, exit_code)

        if one_shot:
            return exit_code
        if exit_code in FATAL_EXIT_CODES:
            LOGGER.error("Configuration error, stopping service")
            return exit_code

        delay = seconds_until_next_cycle(started, interval, clock())
        LOGGER.debug("Next cycle in %.0f seconds", delay)
        sleep(delay)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    subtitle_generator.configure_logging(args)

    try:
        return serve(build_generator_args(args), args.interval, one_shot=args.one_shot)
    except KeyboardInterrupt:
        LOGGER.info("Service interrupted by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
