"""
Facebook Service
Handles Facebook video downloads
"""

from video_pipeline.models import Platform
from video_pipeline.services import BaseService, BaseProvider


class FacebookProvider(BaseProvider):
    """Base class for Facebook video providers."""
    pass


class FacebookService(BaseService):
    """Service for downloading Facebook videos."""

    SERVICE_NAME = "FACEBOOK"
    PLATFORM = Platform.FACEBOOK
    DEFAULT_PRIORITY = 80
    PROVIDER_BASE_CLASS = FacebookProvider


__all__ = ['FacebookProvider', 'FacebookService']
