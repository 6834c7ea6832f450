#!/usr/bin/env python3
"""Media library traversal for the subtitle generator.

Walks the library depth-first, removes generated subtitles whose video is
gone, and collects the videos that still lack a subtitle in the target
language. Directories holding an ``.ignore`` file are skipped entirely.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from generator_config import IGNORE_MARKER, WHISPER_LANGUAGE_CODES, GeneratorConfig
from media_tools import MediaToolError, MediaToolkit
from subtitle_naming import (
    SUBTITLE_SUFFIX,
    external_subtitle_path,
    find_video_for_stem,
    generated_subtitle_path,
    video_stem_for_generated,
)


LOGGER = logging.getLogger("library_scanner")

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class ScanResult:
    candidates: Tuple[Path, ...]
    removed: Tuple[Path, ...]
    skipped: int
    errors: int


def usable_audio_language(language: Optional[str]) -> Optional[str]:
    """Return the language if the transcription service can handle it."""
    if language and language in WHISPER_LANGUAGE_CODES:
        return language
    return None


class LibraryScanner:
    """Single-use traversal state for one run."""

    def __init__(self, config: GeneratorConfig, toolkit: MediaToolkit, now: Optional[float] = None) -> None:
        self.config = config
        self.toolkit = toolkit
        self.now = time.time() if now is None else now
        self.suffixes = config.video_suffixes
        self.candidates: List[Path] = []
        self.removed: List[Path] = []
        self.skipped = 0
        self.errors = 0

    def scan(self) -> ScanResult:
        self.scan_directory(self.config.start_dir)
        return ScanResult(
            candidates=tuple(self.candidates),
            removed=tuple(self.removed),
            skipped=self.skipped,
            errors=self.errors,
        )

    def scan_directory(self, directory: Path) -> None:
        LOGGER.info("Scanning directory %s", directory)

        if (directory / IGNORE_MARKER).is_file():
            LOGGER.info("Skip. '%s' file present.", IGNORE_MARKER)
            return

        self.cleanup_abandoned_subtitles(directory)

        for item in self.list_entries(directory):
            if item.is_dir():
                if item.name in self.config.ignore_dirs:
                    LOGGER.debug("Ignoring directory %s", item)
                    continue
                self.scan_directory(item)
            elif item.is_file() and item.suffix in self.suffixes:
                self.check_video(item)

    def list_entries(self, directory: Path) -> List[Path]:
        """Visible entries of ``directory`` sorted by name, honouring the age filter."""
        try:
            entries = sorted(directory.iterdir(), key=lambda path: path.name)
        except OSError as exc:
            LOGGER.warning("Cannot list directory %s: %s", directory, exc)
            return []
        return [entry for entry in entries if not entry.name.startswith(".") and self.is_recent(entry)]

    def is_recent(self, path: Path) -> bool:
        if self.config.days is None:
            return True
        try:
            age = self.now - path.stat().st_mtime
        except OSError:
            return False
        return age < self.config.days * SECONDS_PER_DAY

    def cleanup_abandoned_subtitles(self, directory: Path) -> None:
        keyword = self.config.generated_keyword
        try:
            subtitles = sorted(
                p for p in directory.glob(f"*{SUBTITLE_SUFFIX}") if not p.name.startswith(".") and p.is_file()
            )
        except OSError as exc:
            LOGGER.warning("Cannot list subtitles in %s: %s", directory, exc)
            return

        for subtitle in subtitles:
            stem = video_stem_for_generated(subtitle, keyword)
            if stem is None:
                continue
            if find_video_for_stem(directory, stem, self.suffixes) is not None:
                continue

            LOGGER.info("Removing abandoned subtitle %s", subtitle)
            if self.config.dry_run:
                LOGGER.info("    DRY_RUN remove %s", subtitle)
                continue
            try:
                subtitle.unlink()
            except OSError as exc:
                LOGGER.error("Failed to remove %s: %s", subtitle, exc)
                self.errors += 1
                continue
            self.removed.append(subtitle)

    def skip(self, reason: str, *args: object) -> None:
        LOGGER.info("Skip. " + reason, *args)
        self.skipped += 1

    def check_video(self, video: Path) -> None:
        LOGGER.info("Checking video %s", video)
        config = self.config

        if generated_subtitle_path(video, config).exists():
            self.skip("Already generated.")
            return

        if external_subtitle_path(video, config).exists():
            self.skip("Already has non-generated external subtitle in '%s'.", config.subtitle_language)
            return

        try:
            tracks = self.toolkit.inspect_tracks(video)
        except MediaToolError as exc:
            LOGGER.warning("Skip. Failed to read metadata: %s", exc)
            self.skipped += 1
            return

        if tracks.has_text_language(config.subtitle_language):
            self.skip("Video has embedded subtitles in '%s'.", config.subtitle_language)
            return

        language = tracks.first_audio_language()
        if config.check_audio and language == config.subtitle_language:
            self.skip(
                "--check-audio is enabled and the first audio track is already in '%s'.",
                config.subtitle_language,
            )
            return

        if not language:
            LOGGER.warning("Skip. Failed to detect audio language of first audio track.")
            self.skipped += 1
            return

        if usable_audio_language(language) is None:
            LOGGER.warning("Skip. Invalid language code: %s", language)
            self.skipped += 1
            return

        self.candidates.append(video)
        LOGGER.info("Schedule subtitle generation for: %s", video)


def scan_library(config: GeneratorConfig, toolkit: MediaToolkit, now: Optional[float] = None) -> ScanResult:
    scanner = LibraryScanner(config, toolkit, now=now)
    result = scanner.scan()
    LOGGER.info(
        "Scan complete! %d videos scheduled (%d skipped, %d abandoned subtitles removed)",
        len(result.candidates),
        result.skipped,
        len(result.removed),
    )
    return result
