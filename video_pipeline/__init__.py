"""
Video download feature module.

This module contains everything related to video downloading:
- URL classification and service routing
- Extraction services (YouTube, Facebook, LinkedIn, TikTok)
- Format negotiation, fetching, merging and delivery
- Pipeline handler for Telegram integration
"""

from video_pipeline.handler import VideoDownloadHandler, handle_choice_callback
from video_pipeline.orchestrator import SessionOrchestrator

# For extending with new services
from video_pipeline.services import BaseService, BaseProvider

__all__ = [
    'VideoDownloadHandler',
    'handle_choice_callback',
    'SessionOrchestrator',
    'BaseService',
    'BaseProvider',
]
