import socket
import threading
import unittest

from audio_stream_bridge.bridge import (
    METHOD_GET_AUDIO_STREAM,
    METHOD_GET_PERFORMANCE_STATS,
    METHOD_GET_VIDEO_INFO,
    METHOD_SEARCH_VIDEOS,
    ExtractionBridge,
)
from audio_stream_bridge.errors import (
    ExtractionError,
    ExtractionTimeoutError,
    InitializationError,
    InvalidArgumentError,
)
from audio_stream_bridge.extractor.base import KIND_AUDIO, KIND_INFO, KIND_SEARCH
from audio_stream_bridge.extractor.pool import ExtractorPool


WATCH_URL = "https://www.youtube.com/watch?v=abc123"

AUDIO_INFO = {
    "id": "abc123",
    "title": "Lofi beats",
    "duration": 183.7,
    "thumbnail": "https://i.ytimg.com/vi/abc123/hq.jpg",
    "uploader": "Chill Channel",
    "view_count": 4200,
    "formats": [
        {
            "format_id": "18",
            "acodec": "mp4a.40.2",
            "vcodec": "avc1.42001E",
            "ext": "mp4",
            "abr": 96,
            "url": "https://video-with-audio.example",
        },
        {
            "format_id": "140",
            "acodec": "mp4a.40.2",
            "vcodec": "none",
            "ext": "m4a",
            "abr": 128.4,
            "url": "https://audio-128.example",
        },
        {
            "format_id": "251",
            "acodec": "opus",
            "vcodec": "none",
            "ext": "webm",
            "abr": 160,
            "url": "https://audio-160.example",
        },
    ],
}


class FakeDownloadError(Exception):
    """Mimics yt-dlp's DownloadError, which keeps the cause in ``exc_info``."""

    def __init__(self, message, exc_info=None):
        super().__init__(message)
        self.exc_info = exc_info


class FakeHandle:
    def __init__(self, config, responses):
        self.config = config
        self.calls = []
        self._responses = responses

    def extract_info(self, url, download=True):
        self.calls.append((url, download))
        response = self._responses.get(url)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response()
        return response

    def sanitize_info(self, info):
        return info


class BridgeTestCase(unittest.TestCase):
    def make_bridge(self, responses, handle_factory=None):
        factory = handle_factory or (lambda config: FakeHandle(config, responses))
        bridge = ExtractionBridge(ExtractorPool(handle_factory=factory))
        self.addCleanup(bridge.shutdown)
        return bridge


class TestGetAudioStream(BridgeTestCase):
    def test_returns_best_audio_stream(self):
        bridge = self.make_bridge({WATCH_URL: AUDIO_INFO})
        result = bridge.get_audio_stream("abc123", "high")
        self.assertEqual(result.url, "https://audio-128.example")
        self.assertEqual(result.bitrate, 128)
        self.assertEqual(result.title, "Lofi beats")
        self.assertEqual(result.duration, 183)
        self.assertEqual(result.uploader, "Chill Channel")
        self.assertEqual(
            bridge.pool.get_handle(KIND_AUDIO).calls,
            [(WATCH_URL, False)],
        )

    def test_quality_tier_changes_selection(self):
        bridge = self.make_bridge({WATCH_URL: AUDIO_INFO})
        result = bridge.get_audio_stream("abc123", "Medium")
        self.assertEqual(result.url, "https://audio-160.example")

    def test_empty_id_is_rejected_without_extraction(self):
        bridge = self.make_bridge({})
        for bad in ("", "   ", None):
            with self.assertRaises(InvalidArgumentError):
                bridge.get_audio_stream(bad, "high")
        stats = bridge.get_performance_stats()
        self.assertEqual(stats.total_calls, 0)
        self.assertFalse(stats.pool_initialized)

    def test_missing_info(self):
        bridge = self.make_bridge({WATCH_URL: None})
        with self.assertRaises(ExtractionError) as ctx:
            bridge.get_audio_stream("abc123")
        self.assertEqual(str(ctx.exception), "Failed to extract info")

    def test_missing_formats(self):
        bridge = self.make_bridge({WATCH_URL: {"id": "abc123"}})
        with self.assertRaises(ExtractionError) as ctx:
            bridge.get_audio_stream("abc123")
        self.assertEqual(str(ctx.exception), "No formats found")

    def test_no_suitable_format(self):
        info = {"formats": [AUDIO_INFO["formats"][0]]}
        bridge = self.make_bridge({WATCH_URL: info})
        with self.assertRaises(ExtractionError) as ctx:
            bridge.get_audio_stream("abc123")
        self.assertEqual(str(ctx.exception), "No suitable audio format found")

    def test_timeout_is_retryable(self):
        bridge = self.make_bridge({WATCH_URL: socket.timeout("timed out")})
        with self.assertRaises(ExtractionTimeoutError) as ctx:
            bridge.get_audio_stream("abc123")
        self.assertTrue(ctx.exception.retryable)

    def test_wrapped_timeout_is_detected(self):
        cause = TimeoutError("read operation")
        error = FakeDownloadError(
            "ERROR: unable to download webpage",
            exc_info=(TimeoutError, cause, None),
        )
        bridge = self.make_bridge({WATCH_URL: error})
        with self.assertRaises(ExtractionTimeoutError):
            bridge.get_audio_stream("abc123")

    def test_timeout_message_on_download_error(self):
        error = FakeDownloadError("ERROR: Read timed out.")
        bridge = self.make_bridge({WATCH_URL: error})
        with self.assertRaises(ExtractionTimeoutError):
            bridge.get_audio_stream("abc123")

    def test_timeout_text_in_nested_cause_is_not_a_timeout(self):
        cause = ValueError("uploader note: stream timed out last week")
        error = FakeDownloadError(
            "ERROR: [youtube] abc123: Video unavailable",
            exc_info=(ValueError, cause, None),
        )
        bridge = self.make_bridge({WATCH_URL: error})
        with self.assertRaises(ExtractionError) as ctx:
            bridge.get_audio_stream("abc123")
        self.assertEqual(ctx.exception.code, "EXTRACTION_ERROR")

    def test_library_failure_becomes_extraction_error(self):
        error = FakeDownloadError("ERROR: [youtube] abc123: Video unavailable")
        bridge = self.make_bridge({WATCH_URL: error})
        with self.assertRaises(ExtractionError) as ctx:
            bridge.get_audio_stream("abc123")
        self.assertIn("Video unavailable", str(ctx.exception))
        self.assertIs(ctx.exception.__cause__, error)

    def test_initialization_failure(self):
        def broken_factory(config):
            raise ImportError("No module named 'yt_dlp'")

        bridge = self.make_bridge({}, handle_factory=broken_factory)
        with self.assertRaises(InitializationError):
            bridge.get_audio_stream("abc123")
        stats = bridge.get_performance_stats()
        self.assertEqual(stats.total_calls, 1)
        self.assertFalse(stats.pool_initialized)
        self.assertFalse(stats.extractors_ready)


class TestGetVideoInfo(BridgeTestCase):
    def test_uses_info_handle(self):
        bridge = self.make_bridge({WATCH_URL: AUDIO_INFO})
        result = bridge.get_video_info("abc123")
        self.assertEqual(result.id, "abc123")
        self.assertEqual(result.view_count, 4200)
        self.assertEqual(result.description, "")
        self.assertEqual(len(bridge.pool.get_handle(KIND_INFO).calls), 1)
        self.assertEqual(bridge.pool.get_handle(KIND_AUDIO).calls, [])

    def test_missing_id_falls_back_to_requested(self):
        bridge = self.make_bridge({WATCH_URL: {"title": "No id"}})
        self.assertEqual(bridge.get_video_info("abc123").id, "abc123")


class TestSearchVideos(BridgeTestCase):
    def test_missing_entries_is_empty(self):
        bridge = self.make_bridge({"ytsearch5:lofi": {"id": "lofi"}})
        self.assertEqual(bridge.search_videos("lofi", 5), [])
        self.assertEqual(
            bridge.pool.get_handle(KIND_SEARCH).calls,
            [("ytsearch5:lofi", False)],
        )

    def test_default_result_count(self):
        raw = {"entries": [{"id": "a"}, {"id": "b"}]}
        bridge = self.make_bridge({"ytsearch10:lofi": raw})
        results = bridge.search_videos("lofi")
        self.assertEqual([entry.id for entry in results], ["a", "b"])

    def test_no_result_fails(self):
        bridge = self.make_bridge({"ytsearch3:lofi": None})
        with self.assertRaises(ExtractionError) as ctx:
            bridge.search_videos("lofi", 3)
        self.assertEqual(str(ctx.exception), "Search failed")

    def test_invalid_arguments(self):
        bridge = self.make_bridge({})
        with self.assertRaises(InvalidArgumentError):
            bridge.search_videos("", 5)
        with self.assertRaises(InvalidArgumentError):
            bridge.search_videos("lofi", 0)
        with self.assertRaises(InvalidArgumentError):
            bridge.search_videos("lofi", True)
        self.assertEqual(bridge.get_performance_stats().total_calls, 0)


class TestPerformanceStats(BridgeTestCase):
    def test_counts_every_attempt_and_reuse(self):
        bridge = self.make_bridge({WATCH_URL: AUDIO_INFO})
        bridge.get_audio_stream("abc123")
        with self.assertRaises(ExtractionError):
            bridge.get_audio_stream("missing")
        bridge.get_video_info("abc123")
        with self.assertRaises(InvalidArgumentError):
            bridge.get_video_info("")

        stats = bridge.get_performance_stats()
        self.assertEqual(stats.total_calls, 3)
        self.assertEqual(stats.cache_hits, 2)
        self.assertTrue(stats.pool_initialized)
        self.assertTrue(stats.extractors_ready)
        self.assertEqual(
            stats.to_dict(),
            {
                "totalCalls": 3,
                "cacheHits": 2,
                "poolInitialized": True,
                "extractorsReady": True,
            },
        )


class TestHandleMethodCall(BridgeTestCase):
    def test_unknown_method_is_not_implemented(self):
        bridge = self.make_bridge({})
        response = bridge.handle_method_call("downloadVideo", {})
        self.assertFalse(response.ok)
        self.assertTrue(response.not_implemented)
        self.assertIsNone(response.error_code)
        self.assertEqual(response.to_dict()["not_implemented"], True)

    def test_missing_argument(self):
        bridge = self.make_bridge({})
        response = bridge.handle_method_call(METHOD_GET_AUDIO_STREAM, {})
        self.assertEqual(response.error_code, "INVALID_ARGUMENT")
        self.assertEqual(response.error_message, "videoId is required")
        self.assertFalse(response.retryable)
        self.assertEqual(bridge.get_performance_stats().total_calls, 0)

    def test_success_payload(self):
        bridge = self.make_bridge({WATCH_URL: AUDIO_INFO})
        response = bridge.handle_method_call(
            METHOD_GET_AUDIO_STREAM,
            {"videoId": "abc123", "quality": "low"},
        )
        self.assertTrue(response.ok)
        self.assertEqual(
            set(response.payload),
            {"url", "title", "duration", "thumbnail", "uploader", "bitrate"},
        )

    def test_non_string_quality_defaults_to_high(self):
        bridge = self.make_bridge({WATCH_URL: AUDIO_INFO})
        response = bridge.handle_method_call(
            METHOD_GET_AUDIO_STREAM,
            {"videoId": "abc123", "quality": 2},
        )
        self.assertTrue(response.ok)
        self.assertEqual(response.payload["url"], "https://audio-128.example")

    def test_non_mapping_arguments_are_rejected(self):
        bridge = self.make_bridge({WATCH_URL: AUDIO_INFO})
        response = bridge.handle_method_call(METHOD_GET_VIDEO_INFO, ["abc123"])
        self.assertEqual(response.error_code, "INVALID_ARGUMENT")
        self.assertEqual(response.error_message, "arguments must be a mapping")
        self.assertEqual(bridge.get_performance_stats().total_calls, 0)

    def test_extraction_error_payload(self):
        bridge = self.make_bridge({WATCH_URL: None})
        response = bridge.handle_method_call(METHOD_GET_VIDEO_INFO, {"videoId": "abc123"})
        self.assertEqual(response.error_code, "EXTRACTION_ERROR")
        self.assertTrue(response.retryable)
        self.assertEqual(
            response.to_dict()["error"],
            {
                "code": "EXTRACTION_ERROR",
                "message": "Failed to extract info",
                "retryable": True,
            },
        )

    def test_search_payload_is_list(self):
        raw = {"entries": [{"id": "a", "title": "A"}]}
        bridge = self.make_bridge({"ytsearch2:lofi": raw})
        response = bridge.handle_method_call(
            METHOD_SEARCH_VIDEOS,
            {"query": "lofi", "maxResults": 2},
        )
        self.assertTrue(response.ok)
        self.assertEqual(response.payload[0]["id"], "a")
        self.assertEqual(response.payload[0]["view_count"], 0)

    def test_broken_handle_is_contained(self):
        def exploding_factory(config):
            handle = FakeHandle(config, {WATCH_URL: AUDIO_INFO})
            handle.sanitize_info = None
            return handle

        bridge = self.make_bridge({}, handle_factory=exploding_factory)
        response = bridge.handle_method_call(METHOD_GET_VIDEO_INFO, {"videoId": "abc123"})
        self.assertFalse(response.ok)
        self.assertEqual(response.error_code, "EXTRACTION_ERROR")


class TestSubmit(BridgeTestCase):
    def test_delivers_once_through_callback(self):
        bridge = self.make_bridge({WATCH_URL: AUDIO_INFO})
        received = []
        delivered = threading.Event()

        def callback(response):
            received.append(response)
            delivered.set()

        request = bridge.submit(
            METHOD_GET_AUDIO_STREAM,
            {"videoId": "abc123"},
            callback,
        )
        self.assertTrue(delivered.wait(timeout=2))
        response = request.result(timeout=2)
        self.assertTrue(response.ok)
        self.assertEqual(received, [response])
        self.assertFalse(request.deliver(response))
        self.assertEqual(len(received), 1)

    def test_validation_failure_answered_immediately(self):
        bridge = self.make_bridge({})
        request = bridge.submit(METHOD_SEARCH_VIDEOS, {"query": ""})
        self.assertTrue(request.done())
        self.assertEqual(request.result().error_code, "INVALID_ARGUMENT")

    def test_non_mapping_arguments_answered_immediately(self):
        bridge = self.make_bridge({WATCH_URL: AUDIO_INFO})
        for arguments in (["abc123"], "abc123", 42):
            request = bridge.submit(METHOD_GET_AUDIO_STREAM, arguments)
            self.assertTrue(request.done())
            self.assertEqual(request.result().error_code, "INVALID_ARGUMENT")
        self.assertEqual(bridge.get_performance_stats().total_calls, 0)

    def test_stats_and_unknown_answered_immediately(self):
        bridge = self.make_bridge({})
        stats = bridge.submit(METHOD_GET_PERFORMANCE_STATS)
        self.assertTrue(stats.done())
        self.assertEqual(stats.result().payload["totalCalls"], 0)
        unknown = bridge.submit("getLyrics", {"videoId": "abc123"})
        self.assertTrue(unknown.result().not_implemented)

    def test_dispatcher_routes_callback(self):
        bridge = self.make_bridge({WATCH_URL: AUDIO_INFO})
        routed = []
        done = threading.Event()

        def dispatcher(callback, response):
            routed.append(response)
            callback(response)

        request = bridge.submit(
            METHOD_GET_VIDEO_INFO,
            {"videoId": "abc123"},
            lambda response: done.set(),
            dispatcher=dispatcher,
        )
        self.assertTrue(done.wait(timeout=2))
        self.assertEqual(routed, [request.result()])

    def test_abandoned_request_is_not_delivered(self):
        started = threading.Event()
        release = threading.Event()

        def slow_info():
            started.set()
            release.wait(timeout=2)
            return AUDIO_INFO

        bridge = self.make_bridge({WATCH_URL: slow_info})
        received = []
        request = bridge.submit(
            METHOD_GET_VIDEO_INFO,
            {"videoId": "abc123"},
            received.append,
        )
        self.assertTrue(started.wait(timeout=2))
        request.abandon()
        release.set()
        bridge.shutdown(wait=True)

        self.assertEqual(received, [])
        self.assertTrue(request.abandoned)
        self.assertTrue(request.future.cancelled())
        self.assertEqual(bridge.get_performance_stats().total_calls, 1)

    def test_failing_callback_does_not_break_worker(self):
        bridge = self.make_bridge({WATCH_URL: AUDIO_INFO})

        def bad_callback(response):
            raise RuntimeError("receiver gone")

        first = bridge.submit(METHOD_GET_VIDEO_INFO, {"videoId": "abc123"}, bad_callback)
        self.assertTrue(first.result(timeout=2).ok)

        second = bridge.submit(METHOD_GET_VIDEO_INFO, {"videoId": "abc123"})
        self.assertTrue(second.result(timeout=2).ok)

    def test_concurrent_requests_initialize_pool_once(self):
        bridge = self.make_bridge({WATCH_URL: AUDIO_INFO})
        requests = [
            bridge.submit(method, {"videoId": "abc123"})
            for method in (METHOD_GET_AUDIO_STREAM, METHOD_GET_VIDEO_INFO) * 3
        ]
        for request in requests:
            self.assertTrue(request.result(timeout=5).ok)
        self.assertEqual(bridge.pool.init_count, 1)
        stats = bridge.get_performance_stats()
        self.assertEqual(stats.total_calls, 6)
        self.assertEqual(stats.cache_hits, 5)

    def test_busy_kind_does_not_delay_other_kinds(self):
        release = threading.Event()

        def blocked_audio():
            release.wait(timeout=5)
            return AUDIO_INFO

        def factory(config):
            # Only the audio configuration carries a format hint.
            if config.format_hint:
                return FakeHandle(config, {WATCH_URL: blocked_audio})
            return FakeHandle(
                config,
                {WATCH_URL: AUDIO_INFO, "ytsearch10:lofi": {"entries": []}},
            )

        bridge = self.make_bridge({}, handle_factory=factory)
        self.addCleanup(release.set)

        audio = [
            bridge.submit(METHOD_GET_AUDIO_STREAM, {"videoId": "abc123"})
            for _ in range(4)
        ]
        info = bridge.submit(METHOD_GET_VIDEO_INFO, {"videoId": "abc123"})
        search = bridge.submit(METHOD_SEARCH_VIDEOS, {"query": "lofi"})

        self.assertTrue(info.result(timeout=2).ok)
        self.assertEqual(search.result(timeout=2).payload, [])
        self.assertFalse(any(request.done() for request in audio))

        release.set()
        for request in audio:
            self.assertTrue(request.result(timeout=5).ok)
