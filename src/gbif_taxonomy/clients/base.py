"""Serialized, paced HTTP request pipeline.

All outbound requests to the naming service go through a single
background worker that owns the HTTP session:
- Bounded request queue (callers block when it is full)
- At most one request in flight at any time
- Fixed pause after every physical request, success or failure
- One future per request, resolved by the worker

The pipeline is process-wide: use open_pipeline() to get it.
"""

from __future__ import annotations

import logging
import os
import queue
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin

import requests
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_BASE_URL = "https://api.gbif.org/v1/"
DEFAULT_RETRY = 5  # attempts per request
DEFAULT_TIMEOUT = 20.0  # request timeout in seconds
DEFAULT_WAIT = 0.3  # seconds between requests
DEFAULT_BUFFER = 10  # maximum queued requests
DEFAULT_USER_AGENT = "gbif-taxonomy/0.1.0 (https://www.gbif.org/developer/species)"


class GBIFError(Exception):
    """Base class for errors raised by the GBIF clients."""


class TransportExhaustedError(GBIFError):
    """A request failed on every allowed attempt.

    Attributes:
        query: The request path that was attempted
        attempts: Number of attempts made
        last_error: The last transport or decode error, or None if no
            response was ever received
    """

    def __init__(self, query: str, attempts: int, last_error: Exception | None = None):
        self.query = query
        self.attempts = attempts
        self.last_error = last_error
        if last_error is None:
            message = f"gbif: {query}: no answer after {attempts} retries"
        else:
            message = f"gbif: {query}: {last_error}"
        super().__init__(message)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


@dataclass
class PipelineSettings:
    """Request pipeline configuration.

    Defaults are read from the environment (GBIF_API_URL, GBIF_RETRY,
    GBIF_TIMEOUT, GBIF_WAIT, GBIF_BUFFER), including a local .env file.

    Attributes:
        base_url: Root of the species API
        retry: Attempts per request before giving up
        timeout: Transport timeout for a single request, in seconds
        wait: Pause after every physical request, in seconds
        buffer: Maximum number of queued requests
        user_agent: User-Agent header sent with every request
    """

    base_url: str = field(default_factory=lambda: os.getenv("GBIF_API_URL") or DEFAULT_BASE_URL)
    retry: int = field(default_factory=lambda: _env_int("GBIF_RETRY", DEFAULT_RETRY))
    timeout: float = field(default_factory=lambda: _env_float("GBIF_TIMEOUT", DEFAULT_TIMEOUT))
    wait: float = field(default_factory=lambda: _env_float("GBIF_WAIT", DEFAULT_WAIT))
    buffer: int = field(default_factory=lambda: _env_int("GBIF_BUFFER", DEFAULT_BUFFER))
    user_agent: str = DEFAULT_USER_AGENT


@dataclass
class _Request:
    url: str
    params: dict[str, Any] | None
    future: Future[requests.Response]


class RequestPipeline:
    """Single-worker queue that serializes and paces GET requests.

    Example:
        >>> pipeline = RequestPipeline(PipelineSettings(wait=0.5))
        >>> response = pipeline.get("species/5219404")
        >>> response.json()["canonicalName"]
        'Panthera leo'
    """

    def __init__(
        self,
        settings: PipelineSettings | None = None,
        session: requests.Session | None = None,
    ):
        """Start the pipeline worker.

        Args:
            settings: Pipeline configuration (environment defaults if not provided)
            session: HTTP session to use (a new one if not provided)
        """
        self.settings = settings or PipelineSettings()
        # Queue(maxsize=0) would be unbounded
        self._queue: queue.Queue[_Request] = queue.Queue(maxsize=max(1, self.settings.buffer))
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/json",
                "User-Agent": self.settings.user_agent,
            }
        )
        self._worker = threading.Thread(target=self._run, name="gbif-requests", daemon=True)
        self._worker.start()

    def submit(self, path: str, params: dict[str, Any] | None = None) -> Future[requests.Response]:
        """Queue a GET request.

        Blocks while the queue is full.

        Args:
            path: Path relative to the base URL (e.g., "species/5219404")
            params: Query parameters

        Returns:
            Future resolved with the response, or with the transport error
        """
        future: Future[requests.Response] = Future()
        url = urljoin(self.settings.base_url, path)
        self._queue.put(_Request(url=url, params=params, future=future))
        return future

    def get(self, path: str, params: dict[str, Any] | None = None) -> requests.Response:
        """Queue a GET request and wait for its response.

        Raises:
            requests.RequestException: On network or HTTP status errors
        """
        return self.submit(path, params).result()

    def _run(self) -> None:
        while True:
            request = self._queue.get()
            try:
                self._dispatch(request)
            finally:
                self._queue.task_done()
                time.sleep(self.settings.wait)

    def _dispatch(self, request: _Request) -> None:
        if not request.future.set_running_or_notify_cancel():
            return
        logger.debug(f"GET {request.url} params={request.params}")
        try:
            response = self._session.get(request.url, params=request.params, timeout=self.settings.timeout)
            response.raise_for_status()
        except Exception as e:
            # every failure resolves the future, the worker never stops
            request.future.set_exception(e)
            return
        request.future.set_result(response)


_pipeline: RequestPipeline | None = None
_pipeline_lock = threading.Lock()


def open_pipeline(settings: PipelineSettings | None = None) -> RequestPipeline:
    """Get the process-wide request pipeline, starting it on first use.

    Only the first call starts a worker; later calls return the same
    pipeline and ignore their settings.

    Args:
        settings: Configuration used if the pipeline is not running yet

    Returns:
        The shared RequestPipeline
    """
    global _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = RequestPipeline(settings)
            logger.debug(f"Started GBIF request pipeline ({_pipeline.settings.base_url})")
        return _pipeline
