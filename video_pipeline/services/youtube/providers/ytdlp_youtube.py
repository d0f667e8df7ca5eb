"""
yt-dlp YouTube Provider
Lists all directly downloadable renditions of a YouTube video
"""

import logging

from video_pipeline.errors import NoDownloadableMedia
from video_pipeline.models import ExtractionResult, Platform, Rendition
from video_pipeline.services.youtube import YouTubeProvider
from video_pipeline.services.ytdlp import fetch_info, has_codec, is_direct

logger = logging.getLogger(__name__)

# Storyboards and manifests are not fetchable as a single stream
SKIPPED_EXTENSIONS = {"mhtml"}


def rendition_from_format(fmt: dict) -> Rendition:
    """Build a Rendition from one yt-dlp format dict."""
    has_video = has_codec(fmt.get('vcodec'))
    has_audio = has_codec(fmt.get('acodec'))

    quality_label = ""
    if has_video:
        note = fmt.get('format_note') or ""
        if note[:1].isdigit() and note.rstrip('0123456789').endswith('p'):
            quality_label = note
        elif fmt.get('height'):
            quality_label = f"{fmt['height']}p"

    return Rendition(
        source_url=fmt['url'],
        container=fmt.get('ext') or "mp4",
        quality_label=quality_label,
        has_audio=has_audio,
        has_video=has_video,
        approx_bitrate=float(fmt.get('tbr') or fmt.get('abr') or fmt.get('vbr') or 0),
        format_id=str(fmt.get('format_id') or ""),
        filesize=fmt.get('filesize') or fmt.get('filesize_approx'),
        http_headers=dict(fmt.get('http_headers') or {}),
    )


class YouTubeYtDlpProvider(YouTubeProvider):
    """Keyless provider backed by yt-dlp's YouTube extractor."""

    PROVIDER_NAME = "YOUTUBE_YTDLP"
    REQUIRES_API_KEY = False
    DEFAULT_PRIORITY = 90

    def __init__(self, api_key: str = None, cookie_pool=None):
        super().__init__("YouTube-ytdlp", api_key=api_key, cookie_pool=cookie_pool)

    def extract(self, url: str) -> ExtractionResult:
        info = fetch_info(url, self.cookie_pool)

        renditions = []
        for fmt in info.get('formats') or []:
            if not is_direct(fmt) or (fmt.get('ext') or "") in SKIPPED_EXTENSIONS:
                continue
            if not (has_codec(fmt.get('vcodec')) or has_codec(fmt.get('acodec'))):
                continue
            renditions.append(rendition_from_format(fmt))

        logger.info(f"[{self.name}] '{info.get('title')}': {len(renditions)} rendition(s) of {len(info.get('formats') or [])} format(s)")

        if not renditions:
            raise NoDownloadableMedia("no downloadable renditions")

        return ExtractionResult(
            platform=Platform.YOUTUBE,
            source_url=url,
            title=info.get('title') or "",
            renditions=tuple(renditions),
            provider_name=self.name,
        )
