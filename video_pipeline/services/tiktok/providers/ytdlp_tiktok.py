"""
yt-dlp TikTok Provider
Resolves a direct TikTok media URL with yt-dlp's tiktok extractor
"""

import logging

from video_pipeline.models import Platform
from video_pipeline.services.tiktok import TikTokProvider
from video_pipeline.services.ytdlp import YtDlpDirectMixin

logger = logging.getLogger(__name__)


class TikTokYtDlpProvider(YtDlpDirectMixin, TikTokProvider):
    """Keyless provider backed by yt-dlp."""

    PROVIDER_NAME = "TIKTOK_YTDLP"
    PLATFORM = Platform.TIKTOK

    def __init__(self, api_key: str = None, cookie_pool=None):
        super().__init__("TikTok-ytdlp", api_key=api_key, cookie_pool=cookie_pool)
