"""Long-lived yt-dlp extractor handles shared by every request."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Mapping, Optional

from audio_stream_bridge.errors import InitializationError, NotReadyError
from audio_stream_bridge.extractor.base import (
    EXTRACTOR_KINDS,
    ExtractorConfig,
    ExtractorHandle,
    build_extractor_configs,
    build_ytdlp_handle,
)


log = logging.getLogger(__name__)

HandleFactory = Callable[[ExtractorConfig], ExtractorHandle]


class ExtractorPool:
    """Own the audio, info and search extractors for the process lifetime.

    Initialization happens at most once; concurrent first callers block on
    the same lock and reuse the result. A failed initialization leaves no
    state behind so the next call starts over. Extractions are serialized
    per kind, while different kinds run in parallel.
    """

    def __init__(
        self,
        *,
        socket_timeout_seconds: int = 10,
        max_retries: int = 1,
        audio_format_hint: Optional[str] = None,
        handle_factory: Optional[HandleFactory] = None,
    ) -> None:
        self._config_options: Dict[str, Any] = {
            "socket_timeout_seconds": socket_timeout_seconds,
            "max_retries": max_retries,
        }
        if audio_format_hint:
            self._config_options["audio_format_hint"] = audio_format_hint
        self._handle_factory = handle_factory or build_ytdlp_handle

        self._init_lock = threading.Lock()
        self._handle_locks = {kind: threading.Lock() for kind in EXTRACTOR_KINDS}
        self._configs: Optional[Dict[str, ExtractorConfig]] = None
        self._handles: Optional[Dict[str, ExtractorHandle]] = None
        self._init_count = 0

    @property
    def is_initialized(self) -> bool:
        return self._handles is not None

    @property
    def extractors_ready(self) -> bool:
        handles = self._handles
        if handles is None:
            return False
        return all(handles.get(kind) is not None for kind in EXTRACTOR_KINDS)

    @property
    def init_count(self) -> int:
        """Number of times handles were actually constructed."""

        return self._init_count

    @property
    def configs(self) -> Mapping[str, ExtractorConfig]:
        if self._configs is None:
            raise NotReadyError("Extractor pool is not initialized")
        return dict(self._configs)

    def ensure_ready(self) -> bool:
        """Initialize the pool if needed.

        Returns True if this call built the handles, False if they already
        existed.
        """

        if self._handles is not None:
            return False

        with self._init_lock:
            if self._handles is not None:
                return False

            try:
                configs = build_extractor_configs(**self._config_options)
                handles: Dict[str, ExtractorHandle] = {}
                for kind in EXTRACTOR_KINDS:
                    handle = self._handle_factory(configs[kind])
                    if handle is None:
                        raise RuntimeError(f"{kind} extractor could not be created")
                    handles[kind] = handle
            except Exception as exc:
                log.error("Failed to initialize extractor pool: %s", exc)
                raise InitializationError(
                    f"Failed to initialize extractors: {exc}"
                ) from exc

            self._configs = configs
            self._init_count += 1
            self._handles = handles

        log.info("Extractor pool ready (%s)", ", ".join(EXTRACTOR_KINDS))
        return True

    def get_handle(self, kind: str) -> ExtractorHandle:
        if kind not in EXTRACTOR_KINDS:
            raise ValueError(f"Unknown extractor kind: {kind}")
        handles = self._handles
        if handles is None:
            raise NotReadyError("Extractor pool is not initialized")
        return handles[kind]

    def extract(self, kind: str, target: str) -> Optional[Dict[str, Any]]:
        """Run ``extract_info`` on the ``kind`` handle without downloading.

        Returns a JSON-safe copy of the info dict, or None when yt-dlp
        returned nothing.
        """

        handle = self.get_handle(kind)
        with self._handle_locks[kind]:
            info = handle.extract_info(target, download=False)
            if info is None:
                return None
            return handle.sanitize_info(info)
