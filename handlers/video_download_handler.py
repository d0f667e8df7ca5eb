"""Video download handler for the pipeline."""

import logging
from pipeline import PipelineHandler, PipelineContext
from video_pipeline import VideoDownloadHandler as VideoHandler

logger = logging.getLogger(__name__)


class VideoDownloadHandler(PipelineHandler):
    """
    Auto-discovered video download handler.

    Wraps the VideoDownloadHandler from video_pipeline module; runs after
    handlers that consume conversational replies.
    """

    HANDLER_NAME = "VIDEO_DOWNLOAD"
    DEFAULT_PRIORITY = 50

    def __init__(self):
        super().__init__()
        self._video_handler = VideoHandler(stop_on_no_url=True)

    async def should_process(self, ctx: PipelineContext) -> bool:
        return await self._video_handler.should_process(ctx)

    async def process(self, ctx: PipelineContext) -> None:
        """Delegate to the video pipeline handler."""
        await self._video_handler.process(ctx)
