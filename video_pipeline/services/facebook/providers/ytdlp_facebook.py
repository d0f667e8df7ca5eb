"""
yt-dlp Facebook Provider
Resolves a direct Facebook media URL with yt-dlp's facebook extractor
"""

import logging

from video_pipeline.models import Platform
from video_pipeline.services.facebook import FacebookProvider
from video_pipeline.services.ytdlp import YtDlpDirectMixin

logger = logging.getLogger(__name__)


class FacebookYtDlpProvider(YtDlpDirectMixin, FacebookProvider):
    """Keyless provider backed by yt-dlp."""

    PROVIDER_NAME = "FACEBOOK_YTDLP"
    PLATFORM = Platform.FACEBOOK

    def __init__(self, api_key: str = None, cookie_pool=None):
        super().__init__("Facebook-ytdlp", api_key=api_key, cookie_pool=cookie_pool)
