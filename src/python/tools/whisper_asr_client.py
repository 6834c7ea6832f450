#!/usr/bin/env python3
"""
Client for whisper-asr-webservice.

Uploads a media file to ``/asr`` and returns the raw SRT body. The service
reports failures in the body itself (a plain ``Internal Server Error`` or a
JSON object), so written output has to be checked before it is kept.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests

from generator_config import SubGenerateError


LOGGER = logging.getLogger("whisper_asr_client")

INTERNAL_SERVER_ERROR = "Internal Server Error"


class TranscriptionError(SubGenerateError):
    def __init__(self, message: str) -> None:
        super().__init__(message, code=1)


@dataclass(frozen=True)
class AsrResponse:
    status_code: int
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class WhisperAsrClient:
    def __init__(self, endpoint: str, timeout: float, session: Optional[requests.Session] = None) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()

    def transcribe(self, media_path: Path, language: str) -> AsrResponse:
        """POST ``media_path`` and ask for an SRT translation from ``language``."""
        params = {
            "task": "translate",
            "language": language,
            "output": "srt",
        }
        LOGGER.debug("Sending %s to %s (language=%s)", media_path, self.endpoint, language)
        try:
            with media_path.open("rb") as media_file:
                files = {"audio_file": (media_path.name, media_file)}
                response = self.session.post(
                    self.endpoint,
                    params=params,
                    files=files,
                    timeout=self.timeout,
                )
        except (requests.RequestException, OSError) as exc:
            raise TranscriptionError(f"Request to {self.endpoint} failed for {media_path}: {exc}") from exc
        return AsrResponse(status_code=response.status_code, body=response.content)

    def close(self) -> None:
        self.session.close()


def atomic_write_bytes(path: Path, content: bytes) -> None:
    tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=".", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(tmp_fd, "wb") as tmp_file:
            tmp_file.write(content)
        tmp_path.replace(path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise


def check_output_file(path: Path) -> Optional[str]:
    """Return an error description if ``path`` holds a service error instead of SRT.

    An empty file is fine: the video may contain no speech, and keeping the
    empty file stops later runs from scheduling it again.
    """
    text = path.read_text(encoding="utf-8", errors="replace")
    if text.strip() == INTERNAL_SERVER_ERROR:
        return "whisper-asr-webservice returned 'Internal Server Error'. Check server logs for more info."
    first_line = text.splitlines()[0] if text else ""
    if first_line.startswith("{"):
        return f"whisper-asr-webservice returned:\n{text}"
    return None
