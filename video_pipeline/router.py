#!/usr/bin/env python3
"""
Service Router for Multi-Service Video Downloader
Routes classified URLs to the service that owns their platform
"""

import logging
from typing import List, Optional

from video_pipeline.models import ExtractionResult, Platform
from video_pipeline.services import BaseService

logger = logging.getLogger(__name__)


class ServiceRouter:
    """
    Maps platform tags to loaded services.

    When several services claim one platform, the highest priority wins.
    """

    def __init__(self, services: List[BaseService]):
        """
        Initialize service router.

        Args:
            services: List of service instances in priority order
        """
        if not services:
            raise ValueError("At least one service must be configured")

        self.services = services
        logger.info(f"ServiceRouter initialized with {len(services)} service(s): {[s.SERVICE_NAME for s in services]}")

    def service_for(self, platform: Platform) -> Optional[BaseService]:
        """Return the service handling a platform, or None when none is loaded."""
        candidates = [s for s in self.services if s.PLATFORM == platform]
        if not candidates:
            logger.info(f"[ROUTER] No service loaded for platform {platform.value}")
            return None
        return max(candidates, key=lambda s: s.priority)

    def supports(self, platform: Platform) -> bool:
        return self.service_for(platform) is not None

    async def extract(self, platform: Platform, url: str) -> ExtractionResult:
        """
        Extract media for a URL through its platform's service.

        Raises:
            LookupError: no service is loaded for the platform
            MediaError: extraction failed
        """
        service = self.service_for(platform)
        if service is None:
            raise LookupError(f"no service for {platform.value}")

        logger.info(f"[ROUTER] Routing {url} to {service.SERVICE_NAME}")
        return await service.extract_async(url)

    def get_services(self) -> List[str]:
        """
        Get list of configured service names.

        Returns:
            List of service names in priority order
        """
        return [service.SERVICE_NAME for service in self.services]
