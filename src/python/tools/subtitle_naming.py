#!/usr/bin/env python3
"""File naming conventions for subtitles next to a video.

Generated subtitle: ``<stem>.<Language> <keyword>.srt``
External subtitle:  ``<stem>.<lang>.srt``
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

from generator_config import GeneratorConfig


SUBTITLE_SUFFIX = ".srt"


def generated_subtitle_path(video_path: Path, config: GeneratorConfig) -> Path:
    return video_path.with_name(f"{video_path.stem}.{config.subtitle_tag}{SUBTITLE_SUFFIX}")


def external_subtitle_path(video_path: Path, config: GeneratorConfig) -> Path:
    return video_path.with_name(f"{video_path.stem}.{config.subtitle_language}{SUBTITLE_SUFFIX}")


def is_generated_subtitle(path: Path, keyword: str) -> bool:
    return path.suffix == SUBTITLE_SUFFIX and keyword in path.name


def video_stem_for_generated(path: Path, keyword: str) -> Optional[str]:
    """
    Recover the video stem from a generated subtitle file name.

    The tag is the dot-separated component that carries the keyword, so
    ``Movie.Part 1.English [generated].srt`` yields ``Movie.Part 1``. Returns
    None when the name does not follow the generated convention.
    """
    if not is_generated_subtitle(path, keyword):
        return None
    base = path.name[: -len(SUBTITLE_SUFFIX)]
    keyword_at = base.rfind(keyword)
    if keyword_at < 0:
        return None
    tag_start = base.rfind(".", 0, keyword_at)
    if tag_start <= 0:
        return None
    return base[:tag_start]


def find_video_for_stem(directory: Path, stem: str, suffixes: Iterable[str]) -> Optional[Path]:
    for suffix in suffixes:
        candidate = directory / f"{stem}{suffix}"
        if candidate.is_file():
            return candidate
    return None
