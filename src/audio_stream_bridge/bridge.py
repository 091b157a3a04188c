"""Request handling facade between the host application and yt-dlp."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, InvalidStateError, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from audio_stream_bridge.errors import (
    BridgeError,
    ExtractionError,
    InvalidArgumentError,
)
from audio_stream_bridge.extractor.base import (
    KIND_AUDIO,
    KIND_INFO,
    KIND_SEARCH,
    EXTRACTOR_KINDS,
    build_search_expression,
    build_watch_url,
    require_positive_int,
    require_text,
    translate_extraction_failure,
)
from audio_stream_bridge.extractor.formats import (
    TIER_HIGH,
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


log = logging.getLogger(__name__)

METHOD_GET_AUDIO_STREAM = "getAudioStream"
METHOD_GET_VIDEO_INFO = "getVideoInfo"
METHOD_SEARCH_VIDEOS = "searchVideos"
METHOD_GET_PERFORMANCE_STATS = "getPerformanceStats"

DEFAULT_SEARCH_RESULTS = 10


@dataclass(frozen=True)
class PerformanceStats:
    total_calls: int
    cache_hits: int
    pool_initialized: bool
    extractors_ready: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalCalls": self.total_calls,
            "cacheHits": self.cache_hits,
            "poolInitialized": self.pool_initialized,
            "extractorsReady": self.extractors_ready,
        }


class BridgeStats:
    """Process-wide counters; they only ever grow."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._total_calls = 0
        self._cache_hits = 0

    def record_call(self) -> None:
        with self._lock:
            self._total_calls += 1

    def record_cache_hit(self) -> None:
        with self._lock:
            self._cache_hits += 1

    def snapshot(self, pool: ExtractorPool) -> PerformanceStats:
        with self._lock:
            total_calls = self._total_calls
            cache_hits = self._cache_hits
        return PerformanceStats(
            total_calls=total_calls,
            cache_hits=cache_hits,
            pool_initialized=pool.is_initialized,
            extractors_ready=pool.extractors_ready,
        )


@dataclass(frozen=True)
class BridgeResponse:
    """Single reply to a method call: a payload or a structured failure."""

    method: str
    ok: bool
    payload: Any = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    retryable: bool = False
    not_implemented: bool = False

    @classmethod
    def success(cls, method: str, payload: Any) -> "BridgeResponse":
        return cls(method=method, ok=True, payload=payload)

    @classmethod
    def failure(cls, method: str, error: BridgeError) -> "BridgeResponse":
        return cls(
            method=method,
            ok=False,
            error_code=error.code,
            error_message=str(error),
            retryable=error.retryable,
        )

    @classmethod
    def unimplemented(cls, method: str) -> "BridgeResponse":
        return cls(method=method, ok=False, not_implemented=True)

    def to_dict(self) -> Dict[str, Any]:
        """Return a JSON-serializable reply payload."""

        if self.ok:
            return {"method": self.method, "ok": True, "result": self.payload}
        if self.not_implemented:
            return {"method": self.method, "ok": False, "not_implemented": True}
        return {
            "method": self.method,
            "ok": False,
            "error": {
                "code": self.error_code,
                "message": self.error_message,
                "retryable": self.retryable,
            },
        }


ResponseCallback = Callable[[BridgeResponse], None]
Dispatcher = Callable[[ResponseCallback, BridgeResponse], Any]


class PendingRequest:
    """Handle for one submitted call; its response is delivered once.

    ``dispatcher`` routes the callback back to the caller's own context,
    for example ``loop.call_soon_threadsafe``. After ``abandon()`` the
    response is dropped.
    """

    def __init__(
        self,
        method: str,
        *,
        callback: Optional[ResponseCallback] = None,
        dispatcher: Optional[Dispatcher] = None,
    ) -> None:
        self.method = method
        self._callback = callback
        self._dispatcher = dispatcher
        self._future: "Future[BridgeResponse]" = Future()
        self._lock = threading.Lock()
        self._abandoned = False

    @property
    def future(self) -> "Future[BridgeResponse]":
        return self._future

    @property
    def abandoned(self) -> bool:
        return self._abandoned or self._future.cancelled()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> BridgeResponse:
        return self._future.result(timeout=timeout)

    def abandon(self) -> None:
        """The caller went away; do not deliver a response."""

        with self._lock:
            self._abandoned = True
            self._future.cancel()

    def deliver(self, response: BridgeResponse) -> bool:
        """Publish ``response``; returns False if it was dropped."""

        with self._lock:
            if self._abandoned or self._future.done():
                return False
            try:
                self._future.set_result(response)
            except InvalidStateError:
                return False

        callback = self._callback
        if callback is None:
            return True
        try:
            if self._dispatcher is not None:
                self._dispatcher(callback, response)
            else:
                callback(response)
        except Exception:
            log.exception("Could not deliver %s response to caller", self.method)
            return False
        return True


@dataclass(frozen=True)
class _MethodSpec:
    parse: Callable[[Mapping[str, Any]], Dict[str, Any]]
    run: Callable[..., Any]
    kind: Optional[str] = None


class ExtractionBridge:
    """Typed operations plus a method-call surface for the host application."""

    def __init__(
        self,
        pool: ExtractorPool,
        *,
        default_search_results: int = DEFAULT_SEARCH_RESULTS,
    ) -> None:
        self._pool = pool
        self._stats = BridgeStats()
        self._default_search_results = default_search_results
        # One worker per kind, so a busy kind never delays the others.
        self._executors = {
            kind: ThreadPoolExecutor(
                max_workers=1,
                thread_name_prefix=f"extraction-{kind}",
            )
            for kind in EXTRACTOR_KINDS
        }
        self._methods: Dict[str, _MethodSpec] = {
            METHOD_GET_AUDIO_STREAM: _MethodSpec(
                parse=self._parse_audio_arguments,
                kind=KIND_AUDIO,
                run=lambda **kwargs: self.get_audio_stream(**kwargs).to_dict(),
            ),
            METHOD_GET_VIDEO_INFO: _MethodSpec(
                parse=self._parse_info_arguments,
                kind=KIND_INFO,
                run=lambda **kwargs: self.get_video_info(**kwargs).to_dict(),
            ),
            METHOD_SEARCH_VIDEOS: _MethodSpec(
                parse=self._parse_search_arguments,
                kind=KIND_SEARCH,
                run=lambda **kwargs: [
                    entry.to_dict() for entry in self.search_videos(**kwargs)
                ],
            ),
            METHOD_GET_PERFORMANCE_STATS: _MethodSpec(
                parse=lambda arguments: {},
                run=lambda: self.get_performance_stats().to_dict(),
            ),
        }

    @property
    def pool(self) -> ExtractorPool:
        return self._pool

    # Typed operations. These block; call them from a worker thread.

    def get_audio_stream(
        self,
        video_id: str,
        quality: Optional[str] = TIER_HIGH,
    ) -> AudioStreamResult:
        """Resolve ``video_id`` to the best audio-only stream for ``quality``."""

        url = build_watch_url(video_id)
        tier = normalize_quality_tier(quality)
        log.debug("Extracting audio for %s (quality: %s)", video_id, tier)

        with self._logged_failures(KIND_AUDIO, video_id):
            started = time.monotonic()
            info = self._extract(KIND_AUDIO, url)
            if info is None:
                raise ExtractionError("Failed to extract info")

            formats = info.get("formats")
            if not isinstance(formats, list):
                raise ExtractionError("No formats found")

            candidates = [
                CandidateFormat.from_raw(item)
                for item in formats
                if isinstance(item, Mapping)
            ]
            chosen = select_best_audio_format(candidates, tier)
            if chosen is None:
                raise ExtractionError("No suitable audio format found")

            result = normalize_audio(info, chosen)

        elapsed_ms = (time.monotonic() - started) * 1000
        log.info(
            "Extracted audio for %s in %.0fms (%skbps, quality: %s)",
            video_id,
            elapsed_ms,
            result.bitrate,
            tier,
        )
        return result

    def get_video_info(self, video_id: str) -> VideoInfoResult:
        url = build_watch_url(video_id)
        log.debug("Extracting info for %s", video_id)

        with self._logged_failures(KIND_INFO, video_id):
            info = self._extract(KIND_INFO, url)
            if info is None:
                raise ExtractionError("Failed to extract info")
        return normalize_info(info, default_id=video_id.strip())

    def search_videos(
        self,
        query: str,
        max_results: Optional[int] = None,
    ) -> List[SearchResultEntry]:
        if max_results is None:
            max_results = self._default_search_results
        expression = build_search_expression(query, max_results)
        log.debug("Searching for %r (max %s results)", query, max_results)

        with self._logged_failures(KIND_SEARCH, query):
            result = self._extract(KIND_SEARCH, expression)
            if result is None:
                raise ExtractionError("Search failed")
        return normalize_search(result)

    def get_performance_stats(self) -> PerformanceStats:
        return self._stats.snapshot(self._pool)

    # Method-call surface.

    def handle_method_call(
        self,
        method: str,
        arguments: Optional[Mapping[str, Any]] = None,
    ) -> BridgeResponse:
        """Answer a method call on the current thread."""

        spec = self._methods.get(method)
        if spec is None:
            return BridgeResponse.unimplemented(method)
        try:
            kwargs = self._parse_arguments(spec, arguments)
        except InvalidArgumentError as exc:
            log.warning("Rejected %s: %s", method, exc)
            return BridgeResponse.failure(method, exc)
        return self._invoke(method, spec, kwargs)

    def submit(
        self,
        method: str,
        arguments: Optional[Mapping[str, Any]] = None,
        callback: Optional[ResponseCallback] = None,
        *,
        dispatcher: Optional[Dispatcher] = None,
    ) -> PendingRequest:
        """Accept a method call without blocking the caller.

        Validation failures, stats probes and unknown methods are answered
        before this returns; extractions complete on a worker thread.
        """

        request = PendingRequest(method, callback=callback, dispatcher=dispatcher)
        log.debug("Method call: %s", method)

        spec = self._methods.get(method)
        if spec is None:
            request.deliver(BridgeResponse.unimplemented(method))
            return request

        try:
            kwargs = self._parse_arguments(spec, arguments)
        except InvalidArgumentError as exc:
            log.warning("Rejected %s: %s", method, exc)
            request.deliver(BridgeResponse.failure(method, exc))
            return request

        if spec.kind is None:
            request.deliver(self._invoke(method, spec, kwargs))
            return request

        try:
            self._executors[spec.kind].submit(
                self._run_request, request, spec, kwargs
            )
        except RuntimeError as exc:
            log.error("Cannot schedule %s: %s", method, exc)
            request.deliver(
                BridgeResponse.failure(method, ExtractionError(str(exc)))
            )
        return request

    def shutdown(self, wait: bool = True) -> None:
        for executor in self._executors.values():
            executor.shutdown(wait=wait)

    def _run_request(
        self,
        request: PendingRequest,
        spec: _MethodSpec,
        kwargs: Dict[str, Any],
    ) -> None:
        if request.abandoned:
            log.debug("Skipping abandoned %s request", request.method)
            return
        response = self._invoke(request.method, spec, kwargs)
        if not request.deliver(response):
            log.debug("Dropped %s response for abandoned request", request.method)

    def _invoke(
        self,
        method: str,
        spec: _MethodSpec,
        kwargs: Dict[str, Any],
    ) -> BridgeResponse:
        try:
            payload = spec.run(**kwargs)
        except BridgeError as exc:
            return BridgeResponse.failure(method, exc)
        except Exception as exc:
            log.exception("Unexpected failure in %s %s", method, kwargs)
            return BridgeResponse.failure(method, ExtractionError(str(exc)))
        return BridgeResponse.success(method, payload)

    def _extract(self, kind: str, target: str) -> Optional[Dict[str, Any]]:
        self._stats.record_call()
        if not self._pool.ensure_ready():
            self._stats.record_cache_hit()

        try:
            return self._pool.extract(kind, target)
        except BridgeError:
            raise
        except Exception as exc:
            raise translate_extraction_failure(exc) from exc

    @contextmanager
    def _logged_failures(self, kind: str, subject: str) -> Iterator[None]:
        try:
            yield
        except BridgeError as exc:
            log.warning(
                "%s extraction failed for %r: [%s] %s",
                kind,
                subject,
                exc.code,
                exc,
            )
            raise

    def _parse_arguments(
        self,
        spec: _MethodSpec,
        arguments: Optional[Mapping[str, Any]],
    ) -> Dict[str, Any]:
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, Mapping):
            raise InvalidArgumentError("arguments must be a mapping")
        return spec.parse(arguments)

    def _parse_audio_arguments(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            "video_id": require_text(arguments.get("videoId"), "videoId"),
            "quality": normalize_quality_tier(arguments.get("quality")),
        }

    def _parse_info_arguments(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        return {"video_id": require_text(arguments.get("videoId"), "videoId")}

    def _parse_search_arguments(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        max_results = arguments.get("maxResults")
        if max_results is None:
            max_results = self._default_search_results
        return {
            "query": require_text(arguments.get("query"), "query"),
            "max_results": require_positive_int(max_results, "maxResults"),
        }
