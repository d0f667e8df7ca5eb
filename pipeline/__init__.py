"""
Pipeline architecture for message processing.

Text messages flow through a series of handlers ordered by priority. Each
handler can process the message and optionally stop further processing,
e.g. the account-linking handler consumes a username reply before the
video handler would treat it as a link.

Usage:
    from pipeline import MessagePipeline, load_handlers_from_env

    pipeline = MessagePipeline()
    for handler in load_handlers_from_env("handlers"):
        pipeline.add_handler(handler)

    # In your message handler:
    await pipeline.run(update, context)
"""

import importlib
import inspect
import logging
import os
import pkgutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from telegram import Update
from telegram.constants import ChatType
from telegram.ext import ContextTypes

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """
    Context object that flows through the pipeline.

    Attributes:
        update: Telegram Update object
        context: Telegram callback context (bot_data holds the orchestrator and store)
        should_continue: If False, pipeline stops after current handler
        data: Shared dictionary for handlers to pass data to each other
    """
    update: Update
    context: ContextTypes.DEFAULT_TYPE
    should_continue: bool = True
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def message(self):
        return self.update.message

    @property
    def message_text(self) -> Optional[str]:
        if self.message:
            return self.message.text
        return None

    @property
    def requester_id(self) -> Optional[int]:
        """Telegram id of the sender; falls back to the chat for anonymous posts."""
        if not self.message:
            return None
        if self.message.from_user:
            return self.message.from_user.id
        return self.message.chat_id

    @property
    def is_private(self) -> bool:
        return bool(self.message) and self.message.chat.type == ChatType.PRIVATE

    def stop(self) -> None:
        """Stop the pipeline after current handler."""
        self.should_continue = False


class PipelineHandler(ABC):
    """
    Abstract base class for pipeline handlers.

    Subclasses implement process() and may call ctx.stop() to keep later
    handlers from seeing the message.
    """

    # 0-100, higher runs first
    DEFAULT_PRIORITY = 50

    # Prefix for {HANDLER_NAME}_PRIORITY / {HANDLER_NAME}_ENABLED
    HANDLER_NAME = None

    def __init__(self, name: Optional[str] = None):
        self.name = name or self.__class__.__name__
        self.priority = self.DEFAULT_PRIORITY

    @abstractmethod
    async def process(self, ctx: PipelineContext) -> None:
        """
        Process the message.

        Args:
            ctx: Pipeline context containing update, message, and shared data.
                 Call ctx.stop() to prevent further handlers from running.
        """

    async def should_process(self, ctx: PipelineContext) -> bool:
        """Return False to skip this handler for the message."""
        return True


class MessagePipeline:
    """
    Runs handlers in the order they were added until one stops the pipeline.

    Example:
        pipeline = MessagePipeline()
        pipeline.add_handler(LinkAccountHandler())
        pipeline.add_handler(VideoDownloadHandler())
        await pipeline.run(update, context)
    """

    def __init__(self, stop_on_error: bool = True):
        """
        Initialize the pipeline.

        Args:
            stop_on_error: If True, stop pipeline when a handler raises an exception.
                          If False, log the error and continue to next handler.
        """
        self.handlers: list[PipelineHandler] = []
        self.stop_on_error = stop_on_error

    def add_handler(self, handler: PipelineHandler) -> "MessagePipeline":
        self.handlers.append(handler)
        logger.debug(f"[PIPELINE] Added handler: {handler.name}")
        return self

    async def run(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> PipelineContext:
        """
        Run the pipeline for a message.

        Returns:
            The PipelineContext after all handlers have run (or pipeline stopped)
        """
        ctx = PipelineContext(update=update, context=context)
        logger.debug(f"[PIPELINE] Start for requester {ctx.requester_id}, handlers: {[h.name for h in self.handlers]}")

        for i, handler in enumerate(self.handlers, 1):
            if not ctx.should_continue:
                logger.debug(f"[PIPELINE] Stopped before handler {i}/{len(self.handlers)}: {handler.name}")
                break

            try:
                if not await handler.should_process(ctx):
                    logger.debug(f"[PIPELINE] Handler {handler.name} skipped (should_process=False)")
                    continue
            except Exception as e:
                logger.error(f"[PIPELINE] Error in {handler.name}.should_process(): {e}")
                if self.stop_on_error:
                    break
                continue

            logger.info(f"[PIPELINE] Running handler {i}/{len(self.handlers)}: {handler.name}")
            try:
                await handler.process(ctx)
                logger.debug(f"[PIPELINE] Handler {handler.name} completed, should_continue={ctx.should_continue}")
            except Exception as e:
                logger.error(f"[PIPELINE] Error in {handler.name}.process(): {e}", exc_info=True)
                if self.stop_on_error:
                    ctx.stop()
                    break

        return ctx


def discover_handlers(package_name: str = "handlers") -> list[type[PipelineHandler]]:
    """
    Find every PipelineHandler subclass defined in the modules of a package.

    Args:
        package_name: Importable package to scan (e.g. "handlers")

    Returns:
        List of handler classes (not instances)
    """
    handlers = []

    try:
        package = importlib.import_module(package_name)
    except ImportError as e:
        logger.warning(f"Handlers package not found: {package_name} ({e})")
        return handlers

    for module_info in pkgutil.iter_modules(package.__path__):
        if module_info.name.startswith("_"):
            continue

        try:
            module = importlib.import_module(f"{package_name}.{module_info.name}")
        except Exception as e:
            logger.error(f"Could not load handler from {module_info.name}: {e}")
            continue

        for _, obj in inspect.getmembers(module, inspect.isclass):
            if (issubclass(obj, PipelineHandler) and
                    obj is not PipelineHandler and
                    obj.__module__ == module.__name__):
                handlers.append(obj)
                logger.debug(f"Discovered handler: {obj.__name__} from {module_info.name}")

    return handlers


def load_handlers_from_env(package_name: str = "handlers") -> list[PipelineHandler]:
    """
    Instantiate discovered handlers, sorted by priority (highest first).

    Environment variables:
    - {HANDLER_NAME}_PRIORITY: Override handler priority
    - {HANDLER_NAME}_ENABLED: Set to "false" to disable handler
    """
    handler_classes = discover_handlers(package_name)

    if not handler_classes:
        logger.warning(f"No handlers found in {package_name}/")
        return []

    initialized_handlers = []
    logger.info("Auto-discovering pipeline handlers...")

    for handler_class in handler_classes:
        handler_name = handler_class.HANDLER_NAME
        if handler_name and os.getenv(f"{handler_name}_ENABLED", "true").lower() == "false":
            logger.info(f"  ⊘ Skipping {handler_class.__name__} (disabled via {handler_name}_ENABLED)")
            continue

        try:
            handler = handler_class()
        except Exception as e:
            logger.error(f"  ✗ Failed to initialize {handler_class.__name__}: {e}")
            continue

        if handler_name:
            priority_str = os.getenv(f"{handler_name}_PRIORITY")
            if priority_str:
                try:
                    handler.priority = max(0, min(100, int(priority_str)))
                except ValueError:
                    logger.warning(f"  Invalid priority for {handler.name}: {priority_str}")

        initialized_handlers.append(handler)
        logger.info(f"  ✓ Loaded {handler.name} (priority: {handler.priority})")

    initialized_handlers.sort(key=lambda h: h.priority, reverse=True)
    logger.info(f"Total handlers loaded: {len(initialized_handlers)}")
    return initialized_handlers


__all__ = [
    'PipelineContext',
    'PipelineHandler',
    'MessagePipeline',
    'discover_handlers',
    'load_handlers_from_env'
]
