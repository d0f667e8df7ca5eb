"""
TikTok Service
Handles TikTok video downloads
"""

import re

from video_pipeline.errors import InvalidUrl
from video_pipeline.models import Platform
from video_pipeline.services import BaseService, BaseProvider

VIDEO_URL_PATTERN = re.compile(
    r'https?://(?:www\.|m\.)?tiktok\.com/(?:@[\w.-]+/video/\d+|v/\d+|t/[\w-]+)|https?://(?:vm|vt)\.tiktok\.com/[\w-]+',
    re.IGNORECASE,
)


class TikTokProvider(BaseProvider):
    """Base class for TikTok video providers."""
    pass


class TikTokService(BaseService):
    """Service for downloading TikTok videos."""

    SERVICE_NAME = "TIKTOK"
    PLATFORM = Platform.TIKTOK
    DEFAULT_PRIORITY = 70
    PROVIDER_BASE_CLASS = TikTokProvider

    def validate_url(self, url: str) -> None:
        if not VIDEO_URL_PATTERN.search(url or ""):
            raise InvalidUrl(f"not a TikTok video URL: {url}")


__all__ = ['TikTokProvider', 'TikTokService', 'VIDEO_URL_PATTERN']
