"""FastMCP server entrypoint for audio_stream_bridge."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Mapping, Optional

from audio_stream_bridge.bridge import (
    METHOD_GET_AUDIO_STREAM,
    METHOD_GET_PERFORMANCE_STATS,
    METHOD_GET_VIDEO_INFO,
    METHOD_SEARCH_VIDEOS,
    ExtractionBridge,
)
from audio_stream_bridge.config import Settings
from audio_stream_bridge.extractor.pool import ExtractorPool, HandleFactory
from audio_stream_bridge.logging_setup import setup_logging


def create_bridge(
    settings: Settings,
    *,
    handle_factory: Optional[HandleFactory] = None,
) -> ExtractionBridge:
    """Wire the extractor pool and bridge from settings."""

    pool = ExtractorPool(
        socket_timeout_seconds=settings.socket_timeout_seconds,
        max_retries=settings.max_retries,
        audio_format_hint=settings.audio_format_hint,
        handle_factory=handle_factory,
    )
    return ExtractionBridge(
        pool,
        default_search_results=settings.default_search_results,
    )


async def call_bridge(
    bridge: ExtractionBridge,
    method: str,
    arguments: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Submit a call and await its reply without blocking the event loop.

    Cancelling the awaiting task cancels the pending request, so a late
    reply is dropped instead of delivered.
    """

    request = bridge.submit(method, arguments)
    response = await asyncio.wrap_future(request.future)
    return response.to_dict()


def create_server(settings: Optional[Settings] = None) -> Any:
    """Create and configure the FastMCP server instance."""

    try:
        from mcp.server.fastmcp import FastMCP
    except ImportError as exc:  # pragma: no cover
        raise ImportError(
            "mcp is required. Install dependencies with `pip install -e .`."
        ) from exc

    settings = settings or Settings()
    bridge = create_bridge(settings)

    mcp = FastMCP("audio-stream-bridge")

    @mcp.tool()
    async def get_audio_stream(video_id: str, quality: str = "high") -> Dict[str, Any]:
        """Resolve a YouTube video id to a playable audio-only stream URL.

        quality is one of "low" (~128kbps), "medium" (~160kbps) or
        "high" (highest bitrate).
        """

        return await call_bridge(
            bridge,
            METHOD_GET_AUDIO_STREAM,
            {"videoId": video_id, "quality": quality},
        )

    @mcp.tool()
    async def get_video_info(video_id: str) -> Dict[str, Any]:
        """Fetch title, duration, uploader and view count for a video id."""

        return await call_bridge(bridge, METHOD_GET_VIDEO_INFO, {"videoId": video_id})

    @mcp.tool()
    async def search_videos(
        query: str,
        max_results: int = settings.default_search_results,
    ) -> Dict[str, Any]:
        """Search YouTube and return up to max_results matching videos."""

        return await call_bridge(
            bridge,
            METHOD_SEARCH_VIDEOS,
            {"query": query, "maxResults": max_results},
        )

    @mcp.tool()
    async def get_performance_stats() -> Dict[str, Any]:
        """Report call counters and extractor readiness."""

        return await call_bridge(bridge, METHOD_GET_PERFORMANCE_STATS)

    return mcp


def run() -> None:
    """Run the MCP server with stdio transport."""

    settings = Settings()
    setup_logging(level=settings.log_level)
    mcp = create_server(settings)
    mcp.run()
