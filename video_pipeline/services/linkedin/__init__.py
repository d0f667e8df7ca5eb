"""
LinkedIn Service
Handles LinkedIn video downloads
"""

from video_pipeline.models import Platform
from video_pipeline.services import BaseService, BaseProvider


class LinkedInProvider(BaseProvider):
    """Base class for LinkedIn video providers."""
    pass


class LinkedInService(BaseService):
    """Service for downloading LinkedIn videos."""

    SERVICE_NAME = "LINKEDIN"
    PLATFORM = Platform.LINKEDIN
    DEFAULT_PRIORITY = 60
    PROVIDER_BASE_CLASS = LinkedInProvider


__all__ = ['LinkedInProvider', 'LinkedInService']
