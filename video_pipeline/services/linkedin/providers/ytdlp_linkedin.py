"""
yt-dlp LinkedIn Provider
Resolves a direct LinkedIn media URL with yt-dlp's linkedin extractor
"""

import logging

from video_pipeline.models import Platform
from video_pipeline.services.linkedin import LinkedInProvider
from video_pipeline.services.ytdlp import YtDlpDirectMixin

logger = logging.getLogger(__name__)


class LinkedInYtDlpProvider(YtDlpDirectMixin, LinkedInProvider):
    """Keyless provider backed by yt-dlp."""

    PROVIDER_NAME = "LINKEDIN_YTDLP"
    PLATFORM = Platform.LINKEDIN

    def __init__(self, api_key: str = None, cookie_pool=None):
        super().__init__("LinkedIn-ytdlp", api_key=api_key, cookie_pool=cookie_pool)
