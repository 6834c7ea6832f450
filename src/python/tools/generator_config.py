#!/usr/bin/env python3
"""Run configuration for the subtitle generator.

One immutable ``GeneratorConfig`` is built per run from the command line and
shared by the library scanner and the transcription driver.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Optional, Tuple


DEFAULT_VIDEO_FORMATS = ("mkv", "mp4", "avi")
DEFAULT_IGNORE_DIRS = frozenset({"backdrops", "trailers"})
DEFAULT_GENERATED_KEYWORD = "[generated]"
DEFAULT_REQUEST_TIMEOUT = 4 * 60 * 60.0

# Emby convention: https://emby.media/support/articles/Excluding-Files-Folders.html
IGNORE_MARKER = ".ignore"

# Codes accepted by whisper-asr-webservice.
# See: https://github.com/openai/whisper/blob/main/whisper/tokenizer.py
WHISPER_LANGUAGE_CODES = frozenset(
    {
        "af", "am", "ar", "as", "az", "ba", "be", "bg", "bn", "bo", "br", "bs",
        "ca", "cs", "cy", "da", "de", "el", "en", "es", "et", "eu", "fa", "fi",
        "fo", "fr", "gl", "gu", "ha", "haw", "he", "hi", "hr", "ht", "hu", "hy",
        "id", "is", "it", "ja", "jw", "ka", "kk", "km", "kn", "ko", "la", "lb",
        "ln", "lo", "lt", "lv", "mg", "mi", "mk", "ml", "mn", "mr", "ms", "mt",
        "my", "ne", "nl", "nn", "no", "oc", "pa", "pl", "ps", "pt", "ro", "ru",
        "sa", "sd", "si", "sk", "sl", "sn", "so", "sq", "sr", "su", "sv", "sw",
        "ta", "te", "tg", "th", "tk", "tl", "tr", "tt", "uk", "ur", "uz", "vi",
        "yi", "yo", "zh", "yue",
    }
)

# Whisper's translate task only produces English.
TARGET_LANGUAGE_NAMES = {
    "en": "English",
}


class SubGenerateError(RuntimeError):
    def __init__(self, message: str, code: int = 1) -> None:
        super().__init__(message)
        self.code = code


class ConfigurationError(SubGenerateError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code=2)


def normalise_suffix(fmt: str) -> str:
    """Turn ``mkv`` or ``.mkv`` into ``.mkv`` without changing case."""
    fmt = fmt.strip()
    return fmt if fmt.startswith(".") else f".{fmt}"


def split_list(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class GeneratorConfig:
    start_dir: Path = Path(".")
    whisper_host: str = "localhost"
    whisper_port: int = 9000
    video_formats: Tuple[str, ...] = DEFAULT_VIDEO_FORMATS
    ignore_dirs: FrozenSet[str] = field(default=DEFAULT_IGNORE_DIRS)
    subtitle_language: str = "en"
    generated_keyword: str = DEFAULT_GENERATED_KEYWORD
    check_audio: bool = False
    days: Optional[float] = None
    dry_run: bool = False
    extract_audio: bool = False
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    @property
    def video_suffixes(self) -> Tuple[str, ...]:
        seen = []
        for fmt in self.video_formats:
            suffix = normalise_suffix(fmt)
            if suffix not in seen:
                seen.append(suffix)
        return tuple(seen)

    @property
    def language_name(self) -> str:
        return TARGET_LANGUAGE_NAMES[self.subtitle_language]

    @property
    def subtitle_tag(self) -> str:
        """Tag between the video stem and ``.srt``, e.g. ``English [generated]``."""
        return f"{self.language_name} {self.generated_keyword}"

    @property
    def asr_endpoint(self) -> str:
        return f"http://{self.whisper_host}:{self.whisper_port}/asr"


def validate_config(config: GeneratorConfig) -> None:
    """Reject configurations that must abort the run before any scanning."""
    if config.subtitle_language not in TARGET_LANGUAGE_NAMES:
        supported = ", ".join(f"'{code}'" for code in sorted(TARGET_LANGUAGE_NAMES))
        raise ConfigurationError(
            f"Unsupported subtitle language '{config.subtitle_language}'. "
            f"Only {supported} is currently supported by whisper-asr-webservice."
        )
    if not config.video_suffixes:
        raise ConfigurationError("At least one video format is required")
    if not config.generated_keyword.strip():
        raise ConfigurationError("Generated keyword must not be empty")
    if "/" in config.generated_keyword:
        raise ConfigurationError("Generated keyword must not contain '/'")
    if config.days is not None and config.days <= 0:
        raise ConfigurationError("--days must be greater than zero")
    if not 0 < config.whisper_port < 65536:
        raise ConfigurationError(f"Invalid whisper port {config.whisper_port}")
    if not config.start_dir.is_dir():
        raise ConfigurationError(f"Start directory {config.start_dir} does not exist")
