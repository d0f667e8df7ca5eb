"""
Video downloader module.

Streams renditions to local temp files in worker threads, reporting
throttled progress. Failed downloads never leave a partial file behind.
"""

import asyncio
import logging
import time
from pathlib import Path
from threading import Event, Lock
from typing import Callable, Optional

import requests

from video_pipeline.errors import FetchFailed, MediaError, MediaTooLarge, NoDownloadableMedia, TransientError
from video_pipeline.models import Rendition

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
CONNECT_TIMEOUT = 15
READ_TIMEOUT = 60

DEFAULT_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'
}

# (percent or None when no total size is known, bytes downloaded)
ProgressCallback = Callable[[Optional[float], int], None]
StreamUpdate = Callable[[int, Optional[int]], None]


class ProgressTracker:
    """
    Aggregates byte counts of one or more concurrent streams and reports
    at most once per `interval` seconds. Safe to call from worker threads.
    """

    def __init__(self, callback: ProgressCallback, interval: float = 2.0, clock: Callable[[], float] = time.monotonic):
        self.callback = callback
        self.interval = interval
        self.clock = clock
        self.streams: dict[str, tuple[int, Optional[int]]] = {}
        self.last_report = clock()
        self.lock = Lock()

    def stream(self, name: str) -> StreamUpdate:
        """Return the update function for one named stream."""
        with self.lock:
            self.streams[name] = (0, None)

        def update(downloaded: int, total: Optional[int]) -> None:
            self._update(name, downloaded, total)

        return update

    def _update(self, name: str, downloaded: int, total: Optional[int]) -> None:
        with self.lock:
            self.streams[name] = (downloaded, total)
            now = self.clock()
            if now - self.last_report < self.interval:
                return
            self.last_report = now
            done = sum(d for d, _ in self.streams.values())
            totals = [t for _, t in self.streams.values()]
            percent = None
            if totals and all(totals):
                percent = min(100.0, done * 100.0 / sum(totals))

        try:
            self.callback(percent, done)
        except Exception as e:
            logger.warning(f"[FETCH] Progress callback failed: {type(e).__name__}: {e}")


def _classify_status(status_code: int) -> Optional[MediaError]:
    if status_code in (401, 403, 404, 410):
        return NoDownloadableMedia(f"source returned HTTP {status_code}")
    if status_code == 429 or status_code >= 500:
        return TransientError(f"source returned HTTP {status_code}")
    if status_code >= 400:
        return NoDownloadableMedia(f"source returned HTTP {status_code}")
    return None


def stream_to_file(
    url: str,
    destination: Path,
    headers: Optional[dict] = None,
    max_size: Optional[int] = None,
    on_progress: Optional[StreamUpdate] = None,
    cancelled: Optional[Event] = None,
) -> int:
    """
    Download a URL to a file, blocking.

    Returns:
        Number of bytes written

    Raises:
        NoDownloadableMedia / TransientError: source failure
        MediaTooLarge: declared or streamed size above max_size
        FetchFailed: the destination could not be written
    """
    logger.info(f"[FETCH] Starting download from: {url[:100]}...")
    request_headers = dict(DEFAULT_HEADERS)
    request_headers.update(headers or {})

    try:
        response = requests.get(url, headers=request_headers, stream=True, timeout=(CONNECT_TIMEOUT, READ_TIMEOUT))
    except requests.RequestException as e:
        logger.error(f"[FETCH] ✗ Request failed: {type(e).__name__}: {e}")
        raise TransientError("source request failed", cause=e) from e

    downloaded = 0
    try:
        error = _classify_status(response.status_code)
        if error is not None:
            logger.error(f"[FETCH] ✗ Source returned status {response.status_code}")
            raise error

        total = None
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit():
            total = int(content_length)
            logger.info(f"[FETCH] Content-Length: {total} bytes ({total / (1024*1024):.2f}MB)")
            if max_size and total > max_size:
                logger.error(f"[FETCH] Media too large: {total} bytes (max {max_size})")
                raise MediaTooLarge(f"{total} bytes exceeds {max_size}")

        try:
            with open(destination, 'wb') as fh:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if cancelled is not None and cancelled.is_set():
                        raise TransientError("download cancelled")
                    if not chunk:
                        continue
                    fh.write(chunk)
                    downloaded += len(chunk)

                    if max_size and downloaded > max_size:
                        logger.error(f"[FETCH] Media exceeded size limit during download: {downloaded} bytes")
                        raise MediaTooLarge(f"exceeded {max_size} bytes while streaming")

                    if on_progress:
                        on_progress(downloaded, total)
        except requests.RequestException as e:
            logger.error(f"[FETCH] ✗ Stream interrupted after {downloaded} bytes: {type(e).__name__}: {e}")
            raise TransientError("source stream interrupted", cause=e) from e
        except OSError as e:
            logger.error(f"[FETCH] ✗ Could not write {destination}: {e}")
            raise FetchFailed(f"could not write {destination.name}", cause=e) from e

    except BaseException:
        _remove_partial(destination)
        raise
    finally:
        response.close()

    logger.info(f"[FETCH] ✓ Downloaded {downloaded} bytes ({downloaded / (1024*1024):.2f}MB) to {destination.name}")
    return downloaded


def _drain(future: asyncio.Future) -> None:
    """Retrieve the outcome of an abandoned worker so it is not reported as unhandled."""
    if not future.cancelled():
        future.exception()


def _remove_partial(path: Path) -> None:
    try:
        path.unlink()
        logger.info(f"[FETCH] Removed partial file {path.name}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"[FETCH] Could not remove partial file {path}: {e}")


class Fetcher:
    """Async front for `stream_to_file` supporting concurrent streams."""

    def __init__(self, max_size: Optional[int] = None, cancel_grace: float = 5.0):
        self.max_size = max_size
        self.cancel_grace = cancel_grace

    async def fetch(self, rendition: Rendition, destination: Path, on_progress: Optional[StreamUpdate] = None) -> Path:
        """Stream one rendition to `destination` without blocking the event loop."""
        cancelled = Event()
        worker = asyncio.ensure_future(asyncio.to_thread(
            stream_to_file,
            rendition.source_url,
            destination,
            rendition.http_headers,
            self.max_size,
            on_progress,
            cancelled,
        ))
        try:
            await asyncio.shield(worker)
        except asyncio.CancelledError:
            # the worker thread stops at its next chunk and removes its file
            cancelled.set()
            await asyncio.wait([worker], timeout=self.cancel_grace)
            if not worker.done():
                logger.warning(f"[FETCH] Worker for {destination.name} still running after cancel")
            worker.add_done_callback(_drain)
            raise
        return destination

    async def fetch_all(
        self,
        items: list[tuple[Rendition, Path]],
        tracker: Optional[ProgressTracker] = None,
    ) -> list[Path]:
        """
        Fetch several renditions concurrently and wait for all of them.

        Every fetch runs to completion (and cleans its own partial file)
        before the first failure is re-raised.
        """
        coros = [
            self.fetch(rendition, path, tracker.stream(path.name) if tracker else None)
            for rendition, path in items
        ]
        results = await asyncio.gather(*coros, return_exceptions=True)

        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            # Prefer a taxonomy error over an unexpected one for reporting
            media_errors = [f for f in failures if isinstance(f, MediaError)]
            raise (media_errors or failures)[0]
        return list(results)
