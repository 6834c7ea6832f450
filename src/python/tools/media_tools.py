#!/usr/bin/env python3
"""Wrappers around the external media tools.

``mediainfo`` answers questions about the tracks of a file and ``ffmpeg``
extracts the first audio track when only audio should be uploaded. Both are
hidden behind the ``MediaToolkit`` protocol so the scanner and the driver can
be exercised with fakes.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from generator_config import ConfigurationError, SubGenerateError


LOGGER = logging.getLogger("media_tools")

# Without a UTF-8 locale mediainfo may return an empty document for
# file names containing characters such as '³'.
MEDIAINFO_LOCALE = "en_US.UTF-8"


class MediaToolError(SubGenerateError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code=1)


@dataclass(frozen=True)
class Track:
    kind: str
    language: Optional[str] = None


@dataclass(frozen=True)
class TrackList:
    tracks: Tuple[Track, ...] = ()

    def of_kind(self, kind: str) -> List[Track]:
        return [track for track in self.tracks if track.kind == kind]

    def has_text_language(self, language: str) -> bool:
        return any(track.language == language for track in self.of_kind("Text"))

    def audio_languages(self) -> List[Optional[str]]:
        return [track.language for track in self.of_kind("Audio")]

    def first_audio_language(self) -> Optional[str]:
        audio = self.of_kind("Audio")
        if not audio:
            return None
        return audio[0].language


class MediaToolkit(Protocol):
    def inspect_tracks(self, path: Path) -> TrackList:
        ...

    def extract_first_audio(self, path: Path, destination: Path) -> Path:
        ...


def run_command(cmd: List[str], fail_msg: str, env: Optional[Dict[str, str]] = None) -> subprocess.CompletedProcess:
    LOGGER.debug("Running: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False, env=env)
    except OSError as exc:
        raise MediaToolError(f"{fail_msg}: {exc}") from exc
    if result.returncode != 0:
        stderr_preview = (result.stderr or result.stdout or "").strip().splitlines()[-5:]
        raise MediaToolError(
            f"{fail_msg}: return code {result.returncode}\n" + "\n".join(stderr_preview)
        )
    return result


def _clean_language(value: object) -> Optional[str]:
    if value is None:
        return None
    token = str(value).strip()
    if not token or token.lower() == "null":
        return None
    return token


def parse_mediainfo_json(payload: str) -> TrackList:
    """Build a ``TrackList`` from ``mediainfo --Output=JSON`` output."""
    try:
        data = json.loads(payload or "{}")
    except json.JSONDecodeError as exc:
        raise MediaToolError(f"Unreadable mediainfo output: {exc}") from exc

    media = data.get("media") if isinstance(data, dict) else None
    if not isinstance(media, dict):
        return TrackList()
    raw_tracks = media.get("track") or []
    if isinstance(raw_tracks, dict):
        raw_tracks = [raw_tracks]

    tracks = []
    for raw in raw_tracks:
        if not isinstance(raw, dict):
            continue
        tracks.append(Track(kind=str(raw.get("@type", "")), language=_clean_language(raw.get("Language"))))
    return TrackList(tracks=tuple(tracks))


def find_executable(name: str) -> Optional[str]:
    return shutil.which(name)


class MediaInfoToolkit:
    """``MediaToolkit`` backed by the mediainfo and ffmpeg binaries."""

    def __init__(self, mediainfo: str = "mediainfo", ffmpeg: str = "ffmpeg") -> None:
        self.mediainfo = mediainfo
        self.ffmpeg = ffmpeg

    def _mediainfo_env(self) -> Dict[str, str]:
        env = dict(os.environ)
        env["LANG"] = MEDIAINFO_LOCALE
        return env

    def ensure_available(self, need_ffmpeg: bool) -> None:
        required = [self.mediainfo]
        if need_ffmpeg:
            required.append(self.ffmpeg)
        missing = [name for name in required if find_executable(name) is None]
        if missing:
            raise ConfigurationError(f"Required tools not found on PATH: {', '.join(missing)}")
        try:
            result = run_command([self.mediainfo, "--Version"], "Failed to query mediainfo version")
        except MediaToolError as exc:
            raise ConfigurationError(f"{self.mediainfo} is not usable: {exc}") from exc
        for line in (result.stdout or "").strip().splitlines():
            LOGGER.info("%s", line)

    def inspect_tracks(self, path: Path) -> TrackList:
        result = run_command(
            [self.mediainfo, "--Output=JSON", str(path)],
            f"Error running mediainfo on {path}",
            env=self._mediainfo_env(),
        )
        return parse_mediainfo_json(result.stdout)

    def extract_first_audio(self, path: Path, destination: Path) -> Path:
        """Copy the first audio stream of ``path`` into a Matroska audio file."""
        output = destination.with_suffix(".mka")
        command = [
            self.ffmpeg,
            "-y",
            "-nostdin",
            "-i",
            str(path),
            "-map",
            "0:a:0",
            "-vn",
            "-sn",
            "-dn",
            "-c:a",
            "copy",
            str(output),
        ]
        run_command(command, f"FFmpeg failed to extract audio from {path}")
        return output
