"""Quality-aware selection of audio-only formats."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from audio_stream_bridge.extractor.records import read_number, read_optional_str


TIER_LOW = "low"
TIER_MEDIUM = "medium"
TIER_HIGH = "high"

QUALITY_TIERS = (TIER_LOW, TIER_MEDIUM, TIER_HIGH)

LOW_TARGET_KBPS = 128
MEDIUM_TARGET_KBPS = 160
MEDIUM_MIN_KBPS = 129
MEDIUM_MAX_KBPS = 192
PROXIMITY_BASE = 1000

CONTAINER_BONUS = {
    "m4a": 100,
    "mp3": 50,
}


def normalize_quality_tier(quality: Any) -> str:
    """Map a user-supplied quality string onto a tier, defaulting to high."""

    if not isinstance(quality, str):
        return TIER_HIGH
    normalized = quality.strip().lower()
    if normalized in QUALITY_TIERS:
        return normalized
    return TIER_HIGH


def _is_absent_codec(codec: Optional[str]) -> bool:
    return codec is None or codec.lower() == "none"


@dataclass(frozen=True)
class CandidateFormat:
    """One encoding listed in a yt-dlp ``formats`` entry."""

    audio_codec: Optional[str] = None
    video_codec: Optional[str] = None
    container: Optional[str] = None
    average_bitrate: Optional[float] = None
    nominal_bitrate: Optional[float] = None
    stream_url: Optional[str] = None
    format_id: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "CandidateFormat":
        return cls(
            audio_codec=read_optional_str(raw, "acodec"),
            video_codec=read_optional_str(raw, "vcodec"),
            container=read_optional_str(raw, "ext"),
            average_bitrate=read_number(raw, "abr"),
            nominal_bitrate=read_number(raw, "tbr"),
            stream_url=read_optional_str(raw, "url"),
            format_id=read_optional_str(raw, "format_id"),
        )

    @property
    def bitrate_kbps(self) -> int:
        """Average bitrate, falling back to nominal bitrate, else 0."""

        if self.average_bitrate is not None:
            return int(self.average_bitrate)
        if self.nominal_bitrate is not None:
            return int(self.nominal_bitrate)
        return 0

    @property
    def is_audio_only(self) -> bool:
        return (
            not _is_absent_codec(self.audio_codec)
            and _is_absent_codec(self.video_codec)
            and bool(self.stream_url)
        )


def score_format(candidate: CandidateFormat, tier: str) -> int:
    """Score a candidate for ``tier``; higher is better, 0 means unusable."""

    bitrate = candidate.bitrate_kbps
    if tier == TIER_LOW:
        if bitrate <= LOW_TARGET_KBPS:
            score = PROXIMITY_BASE - (LOW_TARGET_KBPS - bitrate)
        else:
            score = 0
    elif tier == TIER_MEDIUM:
        if MEDIUM_MIN_KBPS <= bitrate <= MEDIUM_MAX_KBPS:
            score = PROXIMITY_BASE - abs(MEDIUM_TARGET_KBPS - bitrate)
        else:
            score = 0
    else:
        score = bitrate

    container = (candidate.container or "").lower()
    return score + CONTAINER_BONUS.get(container, 0)


def select_best_audio_format(
    candidates: Iterable[CandidateFormat],
    tier: str = TIER_HIGH,
) -> Optional[CandidateFormat]:
    """Return the highest scoring audio-only candidate, or None.

    Ties keep the earliest candidate. A candidate must score above zero to
    be selected at all.
    """

    tier = normalize_quality_tier(tier)
    best: Optional[CandidateFormat] = None
    best_score = 0
    for candidate in candidates:
        if not candidate.is_audio_only:
            continue
        score = score_format(candidate, tier)
        if score > best_score:
            best = candidate
            best_score = score
    return best
