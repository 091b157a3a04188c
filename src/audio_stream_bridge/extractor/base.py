"""Extractor configurations and the yt-dlp handle contract."""

from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Protocol

from audio_stream_bridge.config import DEFAULT_AUDIO_FORMAT_HINT
from audio_stream_bridge.errors import (
    ExtractionError,
    ExtractionTimeoutError,
    InvalidArgumentError,
)


KIND_AUDIO = "audio"
KIND_INFO = "info"
KIND_SEARCH = "search"

EXTRACTOR_KINDS = (KIND_AUDIO, KIND_INFO, KIND_SEARCH)

WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"
SEARCH_EXPRESSION_TEMPLATE = "ytsearch{max_results}:{query}"


class ExtractorHandle(Protocol):
    """What the pool needs from a yt-dlp ``YoutubeDL`` instance."""

    def extract_info(self, url: str, download: bool = ...) -> Any:
        ...

    def sanitize_info(self, info_dict: Any) -> Any:
        ...


@dataclass(frozen=True)
class ExtractorConfig:
    """Recognized options for one extraction mode."""

    quiet: bool = True
    skip_download: bool = True
    format_hint: Optional[str] = None
    extract_flat: bool = False
    allow_playlist: bool = False
    socket_timeout_seconds: int = 10
    max_retries: int = 1

    def to_ytdlp_options(self) -> Dict[str, Any]:
        """Build the options dict passed to ``yt_dlp.YoutubeDL``."""

        options: Dict[str, Any] = {
            "quiet": self.quiet,
            "no_warnings": self.quiet,
            "skip_download": self.skip_download,
            "extract_flat": self.extract_flat,
            "noplaylist": not self.allow_playlist,
            "socket_timeout": self.socket_timeout_seconds,
            "retries": self.max_retries,
        }
        if self.format_hint:
            options["format"] = self.format_hint
        return options


def build_extractor_configs(
    *,
    socket_timeout_seconds: int = 10,
    max_retries: int = 1,
    audio_format_hint: str = DEFAULT_AUDIO_FORMAT_HINT,
) -> Dict[str, ExtractorConfig]:
    """Return the audio, info and search configurations keyed by kind."""

    return {
        KIND_AUDIO: ExtractorConfig(
            format_hint=audio_format_hint,
            extract_flat=False,
            socket_timeout_seconds=socket_timeout_seconds,
            max_retries=max_retries,
        ),
        KIND_INFO: ExtractorConfig(
            extract_flat=True,
            socket_timeout_seconds=socket_timeout_seconds,
            max_retries=max_retries,
        ),
        KIND_SEARCH: ExtractorConfig(
            extract_flat=True,
            socket_timeout_seconds=socket_timeout_seconds,
            max_retries=max_retries,
        ),
    }


def require_text(value: Any, name: str) -> str:
    """Return a stripped, non-empty string or raise InvalidArgumentError."""

    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{name} is required")
    return value.strip()


def require_positive_int(value: Any, name: str) -> int:
    """Return ``value`` if it is a positive int, else raise InvalidArgumentError."""

    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f"{name} must be an integer")
    if value <= 0:
        raise InvalidArgumentError(f"{name} must be positive")
    return value


def build_watch_url(video_id: str) -> str:
    """Canonical watch URL for a YouTube video id."""

    return WATCH_URL_TEMPLATE.format(video_id=require_text(video_id, "videoId"))


def build_search_expression(query: str, max_results: int) -> str:
    """yt-dlp search expression returning ``max_results`` matches."""

    query = require_text(query, "query")
    max_results = require_positive_int(max_results, "maxResults")
    return SEARCH_EXPRESSION_TEMPLATE.format(max_results=max_results, query=query)


def build_ytdlp_handle(config: ExtractorConfig) -> ExtractorHandle:
    """Construct a long-lived ``YoutubeDL`` bound to ``config``."""

    yt_dlp = import_yt_dlp()
    return yt_dlp.YoutubeDL(config.to_ytdlp_options())


def import_yt_dlp() -> Any:
    try:
        import yt_dlp
    except ImportError as exc:  # pragma: no cover
        raise ImportError(
            "yt-dlp is required. Install dependencies with `pip install -e .`."
        ) from exc
    return yt_dlp


def _iter_causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    pending = [exc]
    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))
        yield current

        # yt-dlp wraps the original error in ``exc_info`` on DownloadError.
        exc_info = getattr(current, "exc_info", None)
        if isinstance(exc_info, tuple) and len(exc_info) > 1:
            if isinstance(exc_info[1], BaseException):
                pending.append(exc_info[1])
        for linked in (current.__cause__, current.__context__):
            if linked is not None:
                pending.append(linked)


def is_timeout_failure(exc: BaseException) -> bool:
    """Return True if the failure was caused by a socket timeout.

    The whole cause chain is checked by type; only the top-level message is
    matched against yt-dlp's "timed out" wording.
    """

    for current in _iter_causes(exc):
        if isinstance(current, (socket.timeout, TimeoutError)):
            return True
    return "timed out" in str(exc).lower()


def translate_extraction_failure(exc: BaseException) -> Exception:
    """Map a yt-dlp failure onto ExtractionTimeoutError or ExtractionError."""

    message = str(exc) or exc.__class__.__name__
    if is_timeout_failure(exc):
        return ExtractionTimeoutError(message)
    return ExtractionError(message)
