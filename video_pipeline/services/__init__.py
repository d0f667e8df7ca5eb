"""
Video Services Auto-Discovery System
Per-platform extractors with plugin-based providers and fallback
"""

import asyncio
import os
import importlib
import inspect
import logging
from typing import List, Type, Optional
from pathlib import Path

from video_pipeline.cookies import CookiePool
from video_pipeline.errors import InvalidUrl, MediaError, NoDownloadableMedia, TransientError
from video_pipeline.models import ExtractionResult, Platform

logger = logging.getLogger(__name__)


class BaseProvider:
    """Base class for all extraction providers."""

    # Subclasses should define PROVIDER_NAME for auto-generation of env vars
    PROVIDER_NAME = None

    # Or define these explicitly (auto-generated from PROVIDER_NAME if not set)
    API_KEY_ENV_VAR = None
    PRIORITY_ENV_VAR = None

    # Keyless providers (yt-dlp) are always loaded
    REQUIRES_API_KEY = True

    # Default priority if not specified in environment (0-100, higher = tried first)
    DEFAULT_PRIORITY = 50

    def __init__(self, name: str, api_key: Optional[str] = None, cookie_pool: Optional[CookiePool] = None):
        self.name = name
        self.api_key = api_key
        self.cookie_pool = cookie_pool or CookiePool()
        self.priority = self.DEFAULT_PRIORITY

    def extract(self, url: str) -> ExtractionResult:
        """
        Resolve a platform URL.

        Args:
            url: Platform URL to process

        Returns:
            ExtractionResult with renditions or a direct media URL

        Raises:
            MediaError subclass describing why nothing could be extracted
        """
        raise NotImplementedError("Subclass must implement extract()")

    def __str__(self) -> str:
        return self.name


class BaseService:
    """Base class for all platform services."""

    # Subclasses MUST define these
    SERVICE_NAME = None           # e.g., "YOUTUBE"
    PLATFORM = Platform.UNKNOWN
    DEFAULT_PRIORITY = 50         # Service priority (0-100)
    PROVIDER_BASE_CLASS = BaseProvider  # Base class for this service's providers

    def __init__(self):
        self.providers = []
        self.priority = self.DEFAULT_PRIORITY
        self._load_service_priority()

    def _load_service_priority(self):
        """Load service priority from environment variable."""
        if self.SERVICE_NAME:
            priority_env_var = f"{self.SERVICE_NAME}_PRIORITY"
            priority_str = os.getenv(priority_env_var)
            if priority_str:
                try:
                    self.priority = max(0, min(100, int(priority_str)))
                except ValueError:
                    logger.warning(f"Invalid priority for {self.SERVICE_NAME}: {priority_str}, using default")

    def validate_url(self, url: str) -> None:
        """Raise InvalidUrl if the URL is syntactically unusable. Default accepts all."""

    def discover_providers(self) -> List[Type[BaseProvider]]:
        """
        Automatically discover all provider classes in this service's providers folder.

        Returns:
            List of provider classes (not instances)
        """
        providers = []

        service_module = inspect.getmodule(self.__class__)
        if not service_module or not service_module.__file__:
            return providers

        providers_dir = Path(service_module.__file__).parent / "providers"

        if not providers_dir.exists():
            logger.warning(f"No providers folder found for {self.SERVICE_NAME}")
            return providers

        for file_path in sorted(providers_dir.glob("*.py")):
            if file_path.name.startswith("_"):
                continue

            module_name = file_path.stem
            try:
                service_package = service_module.__package__
                module = importlib.import_module(f"{service_package}.providers.{module_name}")

                # Only classes defined in the module itself, not imported bases
                for name, obj in inspect.getmembers(module, inspect.isclass):
                    if (issubclass(obj, self.PROVIDER_BASE_CLASS) and
                        obj is not self.PROVIDER_BASE_CLASS and
                        obj.__module__ == module.__name__):
                        providers.append(obj)

            except Exception as e:
                logger.error(f"Could not load provider from {module_name}: {e}")

        return providers

    def load_providers_from_env(self, cookie_pool: Optional[CookiePool] = None) -> List[BaseProvider]:
        """
        Load and initialize providers based on environment variables.

        Each provider defines PROVIDER_NAME which auto-generates:
        - {PROVIDER_NAME}_API_KEY (only read when REQUIRES_API_KEY)
        - {PROVIDER_NAME}_PRIORITY (optional, 0-100)

        Returns:
            List of initialized provider instances (sorted by priority, highest first)
        """
        provider_classes = self.discover_providers()

        if not provider_classes:
            logger.warning(f"No providers found for {self.SERVICE_NAME}")
            return []

        initialized_providers = []

        for provider_class in provider_classes:
            if provider_class.PROVIDER_NAME:
                provider_name = provider_class.PROVIDER_NAME
                api_key_env_var = provider_class.API_KEY_ENV_VAR or f"{provider_name}_API_KEY"
                priority_env_var = provider_class.PRIORITY_ENV_VAR or f"{provider_name}_PRIORITY"
            else:
                logger.warning(f"Skipping {provider_class.__name__} - PROVIDER_NAME not defined")
                continue

            api_key = os.getenv(api_key_env_var)
            if provider_class.REQUIRES_API_KEY and not api_key:
                logger.debug(f"  Skipping {provider_class.__name__} - {api_key_env_var} not set")
                continue

            try:
                provider = provider_class(api_key=api_key, cookie_pool=cookie_pool)
            except Exception as e:
                logger.error(f"  ✗ Failed to initialize {provider_class.__name__}: {e}")
                continue

            priority_str = os.getenv(priority_env_var)
            if priority_str:
                try:
                    provider.priority = max(0, min(100, int(priority_str)))
                except ValueError:
                    logger.warning(f"Invalid priority for {provider.name}: {priority_str}, using default")

            initialized_providers.append(provider)
            logger.info(f"  ✓ Loaded {provider.name} (priority: {provider.priority})")

        initialized_providers.sort(key=lambda p: p.priority, reverse=True)

        return initialized_providers

    def extract(self, url: str) -> ExtractionResult:
        """
        Extract media using configured providers with fallback.

        A provider reporting InvalidUrl stops the chain. Otherwise a permanent
        failure from any provider wins over transient ones once all are tried.
        """
        logger.info(f"[SERVICE:{self.SERVICE_NAME}] Starting provider fallback chain for {url}")

        self.validate_url(url)

        if not self.providers:
            logger.warning(f"[SERVICE:{self.SERVICE_NAME}] ✗ No providers configured")
            raise NoDownloadableMedia(f"no providers configured for {self.SERVICE_NAME}")

        permanent: Optional[MediaError] = None
        transient: Optional[MediaError] = None

        for i, provider in enumerate(self.providers, 1):
            logger.info(f"[SERVICE:{self.SERVICE_NAME}] Provider {i}/{len(self.providers)}: {provider.name}")
            try:
                result = provider.extract(url)
                logger.info(f"[SERVICE:{self.SERVICE_NAME}] ✓ SUCCESS with provider: {provider.name}")
                return result
            except InvalidUrl:
                raise
            except MediaError as e:
                logger.warning(f"[SERVICE:{self.SERVICE_NAME}] ✗ Provider {provider.name} failed ({e.kind}): {e}")
                if e.retryable:
                    transient = e
                else:
                    permanent = e
            except Exception as e:
                logger.error(f"[SERVICE:{self.SERVICE_NAME}] ✗ Provider {provider.name} raised exception: {type(e).__name__}: {e}", exc_info=True)
                transient = TransientError(str(e), cause=e)

        logger.error(f"[SERVICE:{self.SERVICE_NAME}] ✗ ALL {len(self.providers)} provider(s) FAILED")
        raise permanent or transient

    async def extract_async(self, url: str) -> ExtractionResult:
        """Run the blocking extraction chain in a worker thread."""
        return await asyncio.to_thread(self.extract, url)


def discover_services() -> List[Type[BaseService]]:
    """
    Automatically discover all service classes in the services folder.

    Returns:
        List of service classes (not instances)
    """
    services = []
    current_dir = Path(__file__).parent

    for service_dir in sorted(current_dir.iterdir()):
        if not service_dir.is_dir() or service_dir.name.startswith("_"):
            continue

        if not (service_dir / "__init__.py").exists():
            continue

        service_name = service_dir.name
        try:
            module = importlib.import_module(f"{__name__}.{service_name}")

            for name, obj in inspect.getmembers(module, inspect.isclass):
                if (issubclass(obj, BaseService) and
                    obj is not BaseService and
                    obj.__module__ == module.__name__):
                    services.append(obj)

        except Exception as e:
            logger.error(f"Could not load service from {service_name}: {e}")

    return services


def load_services_from_env(cookie_pool: Optional[CookiePool] = None) -> List[BaseService]:
    """
    Load and initialize services based on environment variables.

    Each service auto-loads its own providers from its providers/ subfolder.

    Returns:
        List of initialized service instances (sorted by priority, highest first)
    """
    service_classes = discover_services()

    if not service_classes:
        raise ValueError("No services found in services folder!")

    initialized_services = []

    logger.info("="*60)
    logger.info("Auto-discovering video services...")
    logger.info("="*60)

    for service_class in service_classes:
        try:
            service = service_class()

            logger.info(f"Loading providers for {service.SERVICE_NAME}...")
            service.providers = service.load_providers_from_env(cookie_pool)

            if service.providers:
                initialized_services.append(service)
                logger.info(f"✓ Loaded service: {service.SERVICE_NAME} with {len(service.providers)} provider(s) (priority: {service.priority})")
            else:
                logger.warning(f"⚠ Service {service.SERVICE_NAME} has no providers configured, skipping")

        except Exception as e:
            logger.error(f"✗ Failed to initialize {service_class.__name__}: {e}")

    if not initialized_services:
        raise ValueError("No services could be initialized! Check your environment variables.")

    initialized_services.sort(key=lambda s: s.priority, reverse=True)

    logger.info("="*60)
    logger.info(f"Total services loaded: {len(initialized_services)}")
    logger.info("="*60)

    return initialized_services


__all__ = ['BaseProvider', 'BaseService', 'discover_services', 'load_services_from_env']
