"""
Shared yt-dlp plumbing for the platform providers.

Wraps `YoutubeDL.extract_info` (metadata only, never downloads) and maps
yt-dlp failures onto the pipeline's transient/permanent taxonomy.
"""

import logging
from typing import Optional

import yt_dlp
from yt_dlp.utils import DownloadError, ExtractorError

from video_pipeline.cookies import CookiePool
from video_pipeline.errors import InvalidUrl, MediaError, NoDownloadableMedia, TransientError
from video_pipeline.models import ExtractionResult, Platform

logger = logging.getLogger(__name__)

BASE_YDL_OPTS = {
    'quiet': True,
    'no_warnings': True,
    'noplaylist': True,
    'skip_download': True,
    'socket_timeout': 30,
}

DIRECT_PROTOCOLS = {"http", "https"}

# Lower-cased fragments of yt-dlp error messages, checked in this order
INVALID_MARKERS = ("unsupported url", "is not a valid url", "incomplete youtube id")
UPSTREAM_MARKERS = ("http error 5", "http error 429", "too many requests", "timed out")
PERMANENT_MARKERS = (
    "private", "unavailable", "has been removed", "not available", "sign in",
    "login", "log in", "members-only", "copyright", "age-restricted",
    "no video formats", "no video could be found", "404",
)
TRANSIENT_MARKERS = (
    "timeout", "temporary failure", "connection", "reset by peer",
    "network is unreachable", "unable to download webpage", "read operation",
)


def map_ytdlp_error(error: Exception) -> MediaError:
    """Translate a yt-dlp exception into a MediaError."""
    message = str(error).lower()

    if any(marker in message for marker in INVALID_MARKERS):
        return InvalidUrl(str(error), cause=error)
    if any(marker in message for marker in UPSTREAM_MARKERS):
        return TransientError(str(error), cause=error)
    if any(marker in message for marker in PERMANENT_MARKERS):
        return NoDownloadableMedia(str(error), cause=error)
    if any(marker in message for marker in TRANSIENT_MARKERS):
        return TransientError(str(error), cause=error)
    return NoDownloadableMedia(str(error), cause=error)


def fetch_info(url: str, cookie_pool: Optional[CookiePool] = None, extra_opts: Optional[dict] = None) -> dict:
    """Run yt-dlp metadata extraction for a URL."""
    opts = dict(BASE_YDL_OPTS)
    if extra_opts:
        opts.update(extra_opts)
    if cookie_pool is not None:
        opts = cookie_pool.apply(opts)

    logger.info(f"[YTDLP] Extracting info for {url} (cookies: {'yes' if 'cookiefile' in opts else 'no'})")
    try:
        with yt_dlp.YoutubeDL(opts) as ydl:
            info = ydl.extract_info(url, download=False)
    except (DownloadError, ExtractorError) as e:
        mapped = map_ytdlp_error(e)
        logger.warning(f"[YTDLP] ✗ Extraction failed ({mapped.kind}): {e}")
        raise mapped from e

    if not info:
        raise NoDownloadableMedia("yt-dlp returned no info")
    return info


def first_entry(info: dict) -> dict:
    """Playlist-like results (posts with several clips) collapse to their first entry."""
    entries = info.get('entries')
    if entries is None:
        return info
    for entry in entries:
        if entry:
            return entry
    raise NoDownloadableMedia("result list is empty")


def has_codec(value: Optional[str]) -> bool:
    return bool(value) and value != "none"


def is_direct(fmt: dict) -> bool:
    return (fmt.get('protocol') or 'https').lower() in DIRECT_PROTOCOLS and bool(fmt.get('url'))


def pick_muxed_url(info: dict) -> Optional[dict]:
    """Best directly-downloadable format carrying both audio and video."""
    formats = info.get('formats') or []
    candidates = [
        f for f in formats
        if is_direct(f) and has_codec(f.get('vcodec')) and has_codec(f.get('acodec'))
    ]
    if not candidates:
        # Some extractors leave codecs unset on progressive formats
        candidates = [
            f for f in formats
            if is_direct(f) and f.get('vcodec') is None and f.get('acodec') is None
        ]
    if not candidates:
        if info.get('url') and is_direct(info):
            return info
        return None
    candidates.sort(key=lambda f: ((f.get('height') or 0), (f.get('tbr') or 0)), reverse=True)
    return candidates[0]


class YtDlpDirectMixin:
    """
    Provider mixin resolving a single direct media URL through yt-dlp.

    Mixed into each platform's provider base so discovery still works per
    service.
    """

    PLATFORM = Platform.UNKNOWN
    REQUIRES_API_KEY = False
    DEFAULT_PRIORITY = 90

    def extract(self, url: str) -> ExtractionResult:
        info = first_entry(fetch_info(url, self.cookie_pool))
        fmt = pick_muxed_url(info)
        if not fmt:
            logger.error(f"[{self.name}] ✗ No downloadable media format in result")
            raise NoDownloadableMedia("no downloadable media format")

        logger.info(f"[{self.name}] ✓ Resolved direct URL (format {fmt.get('format_id', '?')})")
        return ExtractionResult(
            platform=self.PLATFORM,
            source_url=url,
            title=info.get('title') or "",
            direct_url=fmt['url'],
            provider_name=self.name,
            http_headers=dict(fmt.get('http_headers') or {}),
        )


__all__ = [
    'BASE_YDL_OPTS',
    'map_ytdlp_error',
    'fetch_info',
    'first_entry',
    'pick_muxed_url',
    'YtDlpDirectMixin',
]
