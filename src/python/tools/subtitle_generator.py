#!/usr/bin/env python3
"""Subtitle generator for a media library.

Recursively scans a library for videos without a subtitle in the target
language, sends each one (or only its first audio track) to a
whisper-asr-webservice instance, and stores the returned SRT as
``<video>.<Language> [generated].srt`` next to the video. Generated subtitles
whose video has been deleted are removed during the scan.

Videos are processed one at a time. A failed video is logged and the run
continues; the exit code is non-zero if any video failed.
"""

from __future__ import annotations

import argparse
import logging
import shutil
import sys
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from tqdm import tqdm

from generator_config import (
    DEFAULT_GENERATED_KEYWORD,
    DEFAULT_IGNORE_DIRS,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_VIDEO_FORMATS,
    GeneratorConfig,
    SubGenerateError,
    split_list,
    validate_config,
)
from library_scanner import ScanResult, scan_library, usable_audio_language
from media_tools import MediaInfoToolkit, MediaToolError, MediaToolkit
from subtitle_naming import generated_subtitle_path
from whisper_asr_client import TranscriptionError, WhisperAsrClient, atomic_write_bytes, check_output_file


LOGGER = logging.getLogger("subtitle_generator")

TEMP_PREFIX = "sub_generate_"
STALE_TEMP_AGE = 24 * 60 * 60

SUCCEEDED = "success"
SKIPPED = "skipped"
FAILED = "error"


@dataclass(frozen=True)
class RunSummary:
    succeeded: int
    skipped: int
    failed: int
    scan_errors: int = 0
    removed: int = 0

    @property
    def exit_code(self) -> int:
        return 0 if self.failed == 0 and self.scan_errors == 0 else 1


def cleanup_stale_temp_dirs(temp_root: Optional[Path] = None, max_age: float = STALE_TEMP_AGE) -> List[Path]:
    """Best-effort removal of work directories left behind by killed runs."""
    root = temp_root or Path(tempfile.gettempdir())
    removed: List[Path] = []
    now = time.time()
    for path in root.glob(f"{TEMP_PREFIX}*"):
        try:
            if not path.is_dir() or now - path.stat().st_mtime < max_age:
                continue
            shutil.rmtree(path)
        except OSError as exc:
            LOGGER.warning("Failed to remove stale temp directory %s: %s", path, exc)
            continue
        LOGGER.debug("Removed stale temp directory %s", path)
        removed.append(path)
    return removed


class TranscriptionDriver:
    """Turns the scheduled videos into subtitle files, one at a time."""

    def __init__(
        self,
        config: GeneratorConfig,
        toolkit: MediaToolkit,
        client: WhisperAsrClient,
        work_dir: Optional[Path] = None,
    ) -> None:
        self.config = config
        self.toolkit = toolkit
        self.client = client
        self.work_dir = work_dir

    def run(self, candidates: Sequence[Path], progress: bool = False) -> RunSummary:
        counts = {SUCCEEDED: 0, SKIPPED: 0, FAILED: 0}
        total = len(candidates)

        progress_bar = tqdm(total=total, desc="Transcribing", unit="video") if progress else None
        try:
            for index, video in enumerate(candidates, start=1):
                LOGGER.info("Processing file %d of %d: %s", index, total, video)
                status = self.process(video, index)
                counts[status] += 1
                if progress_bar is not None:
                    progress_bar.set_postfix(ok=counts[SUCCEEDED], fail=counts[FAILED], refresh=False)
                    progress_bar.update(1)
        finally:
            if progress_bar is not None:
                progress_bar.close()

        return RunSummary(succeeded=counts[SUCCEEDED], skipped=counts[SKIPPED], failed=counts[FAILED])

    def process(self, video: Path, index: int = 1) -> str:
        config = self.config
        output_file = generated_subtitle_path(video, config)

        # The file may have changed since it was scheduled.
        try:
            language = self.toolkit.inspect_tracks(video).first_audio_language()
        except MediaToolError as exc:
            LOGGER.error("Error: %s", exc)
            return FAILED
        if usable_audio_language(language) is None:
            LOGGER.warning("Skip. No usable audio language for %s (got %r)", video, language)
            return SKIPPED

        if config.dry_run:
            LOGGER.info(
                "    DRY_RUN upload %s to %s (language=%s) and write %s",
                video,
                config.asr_endpoint,
                language,
                output_file,
            )
            return SKIPPED

        media_path = video
        try:
            if config.extract_audio:
                if self.work_dir is None:
                    raise MediaToolError("Audio extraction requires a work directory")
                media_path = self.toolkit.extract_first_audio(video, self.work_dir / f"audio_{index:05d}")
            response = self.client.transcribe(media_path, language)
            atomic_write_bytes(output_file, response.body)
        except (MediaToolError, TranscriptionError, OSError) as exc:
            LOGGER.error("Error: Failed to generate subtitle for %s: %s", video, exc)
            return FAILED
        finally:
            if media_path != video and media_path.exists():
                try:
                    media_path.unlink()
                except OSError:
                    LOGGER.warning("Failed to delete temp audio file %s", media_path)

        if not output_file.exists():
            LOGGER.error("Error: Failed to generate subtitle.")
            return FAILED

        problem = check_output_file(output_file)
        if problem is None and not response.ok:
            problem = f"whisper-asr-webservice responded with HTTP {response.status_code}"
        if problem is not None:
            LOGGER.error("Error: %s", problem)
            self.discard(output_file)
            return FAILED

        LOGGER.info("Wrote %s", output_file)
        return SUCCEEDED

    def discard(self, output_file: Path) -> None:
        try:
            output_file.unlink()
        except OSError as exc:
            LOGGER.error("Failed to remove %s: %s", output_file, exc)


def generate_subtitles(
    config: GeneratorConfig,
    toolkit: MediaToolkit,
    client: WhisperAsrClient,
    progress: bool = False,
) -> RunSummary:
    """Scan the library, then transcribe every scheduled video in order."""
    scan: ScanResult = scan_library(config, toolkit)

    if not scan.candidates:
        LOGGER.info("No videos to process.")
        return RunSummary(
            succeeded=0,
            skipped=0,
            failed=0,
            scan_errors=scan.errors,
            removed=len(scan.removed),
        )

    with tempfile.TemporaryDirectory(prefix=TEMP_PREFIX) as work_dir:
        driver = TranscriptionDriver(config, toolkit, client, work_dir=Path(work_dir))
        summary = driver.run(scan.candidates, progress=progress)

    return RunSummary(
        succeeded=summary.succeeded,
        skipped=summary.skipped,
        failed=summary.failed,
        scan_errors=scan.errors,
        removed=len(scan.removed),
    )


def configure_logging(args: argparse.Namespace) -> None:
    log_level = logging.DEBUG if args.verbose else logging.INFO
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if args.log_file:
        handlers.append(logging.FileHandler(args.log_file, encoding="utf-8"))
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        handlers=handlers,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate missing subtitles for a media library using whisper-asr-webservice")
    parser.add_argument("--start-dir", "-sd", type=Path, default=Path("."), help="Directory to start recursively scanning for videos to process (default: .)")
    parser.add_argument("--whisper-ip", "-wi", type=str, default="localhost", help="whisper-asr-webservice IP address (default: localhost)")
    parser.add_argument("--whisper-port", "-wp", type=int, default=9000, help="whisper-asr-webservice port (default: 9000)")
    parser.add_argument("--video-formats", "-vf", type=str, default=",".join(DEFAULT_VIDEO_FORMATS), help="Comma-separated list of video formats (default: mkv,mp4,avi)")
    parser.add_argument(
        "--ignore-dirs",
        "-id",
        type=str,
        default=",".join(sorted(DEFAULT_IGNORE_DIRS)),
        help="Comma-separated list of directory names to ignore (default: backdrops,trailers). Folders containing an .ignore file are also ignored.",
    )
    parser.add_argument(
        "--subtitle-language",
        "-sl",
        type=str,
        default="en",
        help="Target language for generated subtitles (default: en). Videos with embedded subtitles in that language are skipped.",
    )
    parser.add_argument("--check-audio", "-ca", action="store_true", help="Skip a video if its first audio track is in the target subtitle language")
    parser.add_argument("--days", type=float, help="Consider only files and directories changed in the last DAYS days (default: no filter)")
    parser.add_argument("--generated-keyword", "-gk", type=str, default=DEFAULT_GENERATED_KEYWORD, help="Keyword added to the file name of generated subtitle files (default: [generated])")
    parser.add_argument("--extract-audio", "-ea", action="store_true", help="Upload only the first audio track instead of the whole video (requires ffmpeg)")
    parser.add_argument("--timeout", type=float, default=DEFAULT_REQUEST_TIMEOUT, help="HTTP timeout in seconds for one transcription request")
    parser.add_argument("--dry-run", action="store_true", help="Log changes instead of making them")
    parser.add_argument("--progress", action="store_true", help="Display progress bar")
    parser.add_argument("--log-file", type=Path, help="Optional log file path")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> GeneratorConfig:
    return GeneratorConfig(
        start_dir=args.start_dir,
        whisper_host=args.whisper_ip,
        whisper_port=args.whisper_port,
        video_formats=split_list(args.video_formats),
        ignore_dirs=frozenset(split_list(args.ignore_dirs)),
        subtitle_language=args.subtitle_language,
        generated_keyword=args.generated_keyword,
        check_audio=args.check_audio,
        days=args.days,
        dry_run=args.dry_run,
        extract_audio=args.extract_audio,
        request_timeout=args.timeout,
    )


def run(argv: Optional[List[str]] = None, toolkit: Optional[MediaToolkit] = None) -> int:
    args = parse_args(argv)
    configure_logging(args)

    try:
        config = build_config(args)
        validate_config(config)
        if toolkit is None:
            media_toolkit = MediaInfoToolkit()
            media_toolkit.ensure_available(need_ffmpeg=config.extract_audio)
            toolkit = media_toolkit
    except SubGenerateError as exc:
        LOGGER.error("Error: %s", exc)
        return exc.code

    if config.dry_run:
        LOGGER.info("Dry run: no files will be written or removed")
    else:
        cleanup_stale_temp_dirs()
    client = WhisperAsrClient(config.asr_endpoint, timeout=config.request_timeout)
    try:
        summary = generate_subtitles(config, toolkit, client, progress=args.progress)
    except KeyboardInterrupt:
        LOGGER.warning("Processing aborted via Ctrl+C")
        return 130
    finally:
        client.close()

    LOGGER.info(
        "Completed processing: %d success, %d skipped, %d failures, %d abandoned subtitles removed",
        summary.succeeded,
        summary.skipped,
        summary.failed,
        summary.removed,
    )
    if summary.exit_code == 0:
        LOGGER.info("Done.")
    else:
        LOGGER.error("Completed with errors. See above.")
    return summary.exit_code


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
