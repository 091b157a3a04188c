"""Extractor pool, format scoring and record normalization on top of yt-dlp."""

from audio_stream_bridge.extractor.base import ExtractorConfig, build_extractor_configs
from audio_stream_bridge.extractor.formats import (
    CandidateFormat,
    normalize_quality_tier,
    select_best_audio_format,
)
from audio_stream_bridge.extractor.pool import ExtractorPool
from audio_stream_bridge.extractor.records import (
    AudioStreamResult,
    SearchResultEntry,
    VideoInfoResult,
    normalize_audio,
    normalize_info,
    normalize_search,
)

__all__ = [
    "AudioStreamResult",
    "CandidateFormat",
    "ExtractorConfig",
    "ExtractorPool",
    "SearchResultEntry",
    "VideoInfoResult",
    "build_extractor_configs",
    "normalize_audio",
    "normalize_info",
    "normalize_quality_tier",
    "normalize_search",
    "select_best_audio_format",
]
