"""Conversion of yt-dlp info dicts into flat result records."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

if TYPE_CHECKING:
    from audio_stream_bridge.extractor.formats import CandidateFormat


DEFAULT_AUDIO_BITRATE_KBPS = 128


def read_optional_str(record: Mapping[str, Any], key: str) -> Optional[str]:
    """Return ``record[key]`` as a string, or None when absent or null."""

    value = record.get(key)
    if value is None:
        return None
    return str(value)


def read_str(record: Mapping[str, Any], key: str, default: str = "") -> str:
    value = read_optional_str(record, key)
    if value is None:
        return default
    return value


def read_number(record: Mapping[str, Any], key: str) -> Optional[float]:
    """Return an int or finite float stored under ``key``, else None.

    Booleans and numeric-looking strings are not treated as numbers.
    """

    value = record.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def read_int(record: Mapping[str, Any], key: str, default: int = 0) -> int:
    """Numeric field truncated toward zero, or ``default``."""

    value = read_number(record, key)
    if value is None:
        return default
    return int(value)


def read_thumbnail(record: Mapping[str, Any]) -> str:
    """Single thumbnail URL, falling back to the last (largest) listed one."""

    thumbnail = read_str(record, "thumbnail")
    if thumbnail:
        return thumbnail
    thumbnails = record.get("thumbnails")
    if not isinstance(thumbnails, list):
        return ""
    for item in reversed(thumbnails):
        if isinstance(item, Mapping):
            url = read_str(item, "url")
            if url:
                return url
    return ""


@dataclass(frozen=True)
class AudioStreamResult:
    url: str = ""
    title: str = ""
    duration: int = 0
    thumbnail: str = ""
    uploader: str = ""
    bitrate: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VideoInfoResult:
    id: str = ""
    title: str = ""
    duration: int = 0
    thumbnail: str = ""
    uploader: str = ""
    view_count: int = 0
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SearchResultEntry:
    id: str = ""
    title: str = ""
    duration: int = 0
    thumbnail: str = ""
    uploader: str = ""
    view_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def normalize_audio(
    raw: Mapping[str, Any],
    chosen: "CandidateFormat",
) -> AudioStreamResult:
    """Build the playable stream record for the chosen format."""

    if chosen.average_bitrate is not None:
        bitrate = int(chosen.average_bitrate)
    elif chosen.nominal_bitrate is not None:
        bitrate = int(chosen.nominal_bitrate)
    else:
        bitrate = DEFAULT_AUDIO_BITRATE_KBPS

    return AudioStreamResult(
        url=chosen.stream_url or "",
        title=read_str(raw, "title"),
        duration=read_int(raw, "duration"),
        thumbnail=read_thumbnail(raw),
        uploader=read_str(raw, "uploader"),
        bitrate=bitrate,
    )


def normalize_info(raw: Mapping[str, Any], default_id: str = "") -> VideoInfoResult:
    return VideoInfoResult(
        id=read_str(raw, "id", default_id),
        title=read_str(raw, "title"),
        duration=read_int(raw, "duration"),
        thumbnail=read_thumbnail(raw),
        uploader=read_str(raw, "uploader"),
        view_count=read_int(raw, "view_count"),
        description=read_str(raw, "description"),
    )


def normalize_search_entry(entry: Mapping[str, Any]) -> SearchResultEntry:
    return SearchResultEntry(
        id=read_str(entry, "id"),
        title=read_str(entry, "title"),
        duration=read_int(entry, "duration"),
        thumbnail=read_thumbnail(entry),
        uploader=read_str(entry, "uploader") or read_str(entry, "channel"),
        view_count=read_int(entry, "view_count"),
    )


def normalize_search(raw: Mapping[str, Any]) -> List[SearchResultEntry]:
    """Flatten a ``ytsearchN:`` playlist record into result entries.

    A record without an ``entries`` list yields no results. Entries that
    are not mappings are skipped.
    """

    entries = raw.get("entries")
    if not isinstance(entries, list):
        return []
    return [
        normalize_search_entry(entry)
        for entry in entries
        if isinstance(entry, Mapping)
    ]
