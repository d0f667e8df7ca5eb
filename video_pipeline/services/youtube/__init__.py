"""
YouTube Service
Lists every rendition of a YouTube video for interactive format selection
"""

import re

from video_pipeline.errors import InvalidUrl
from video_pipeline.models import Platform
from video_pipeline.services import BaseService, BaseProvider

# watch?v=ID, youtu.be/ID, /shorts/ID, /embed/ID, /live/ID, /v/ID
VIDEO_URL_PATTERN = re.compile(
    r'(?:youtube(?:-nocookie)?\.com/(?:watch\?(?:.*&)?v=|shorts/|embed/|live/|v/)|youtu\.be/)([\w-]+)',
    re.IGNORECASE,
)


class YouTubeProvider(BaseProvider):
    """Base class for YouTube rendition providers."""
    pass


class YouTubeService(BaseService):
    """Service for downloading YouTube videos."""

    SERVICE_NAME = "YOUTUBE"
    PLATFORM = Platform.YOUTUBE
    DEFAULT_PRIORITY = 90
    PROVIDER_BASE_CLASS = YouTubeProvider

    def validate_url(self, url: str) -> None:
        if not VIDEO_URL_PATTERN.search(url or ""):
            raise InvalidUrl(f"not a YouTube video URL: {url}")


__all__ = ['YouTubeProvider', 'YouTubeService', 'VIDEO_URL_PATTERN']
