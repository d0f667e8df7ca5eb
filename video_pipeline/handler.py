"""
VideoDownloadHandler - Telegram side of the download pipeline.

Detects supported video URLs in messages and hands them to the
SessionOrchestrator; inline keyboard answers are routed back to it through
`handle_choice_callback`.
"""

import logging
from typing import Optional

from telegram import Update
from telegram.constants import ChatAction
from telegram.ext import ContextTypes

from pipeline import PipelineContext, PipelineHandler
from video_pipeline.classifier import find_url
from video_pipeline.delivery import decode_choice
from video_pipeline.orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)

ORCHESTRATOR_KEY = 'orchestrator'


def get_orchestrator(context: ContextTypes.DEFAULT_TYPE) -> Optional[SessionOrchestrator]:
    """The orchestrator built at startup and kept in bot_data."""
    return context.bot_data.get(ORCHESTRATOR_KEY)


class VideoDownloadHandler(PipelineHandler):
    """
    Handler that starts a download job for messages carrying a video URL.

    In groups, unsupported links are ignored silently; in private chats the
    sender is told which platforms are supported.
    """

    def __init__(self, stop_on_no_url: bool = False):
        """
        Initialize the VideoDownloadHandler.

        Args:
            stop_on_no_url: If True, stop pipeline if no video URL is found.
                           If False (default), continue to next handler.
        """
        super().__init__("VideoDownloadHandler")
        self.stop_on_no_url = stop_on_no_url

    async def should_process(self, ctx: PipelineContext) -> bool:
        """Only process text messages."""
        return ctx.message_text is not None

    async def process(self, ctx: PipelineContext) -> None:
        """Hand the message to the orchestrator if it holds a video URL."""
        message = ctx.message
        text = ctx.message_text

        if not message or not text:
            return

        orchestrator = get_orchestrator(ctx.context)
        if orchestrator is None:
            logger.error("[VIDEO] ✗ Orchestrator not initialized")
            return

        chat_name = message.chat.title or 'Private'
        user = message.from_user
        user_name = user.full_name if user else 'Unknown'
        logger.info(f"[VIDEO] START msg={message.message_id} chat='{chat_name}'({message.chat.id}) user='{user_name}' text='{text}'")

        is_private = ctx.is_private
        found = find_url(text)
        ctx.data['video_url_found'] = found is not None

        if found is None and not is_private:
            logger.info(f"[VIDEO] No video URL found in message")
            if self.stop_on_no_url:
                ctx.stop()
            return

        if found is not None:
            await ctx.context.bot.send_chat_action(chat_id=message.chat_id, action=ChatAction.TYPING)

        job = await orchestrator.handle_url(
            chat_id=message.chat_id,
            requester_id=ctx.requester_id,
            text=text,
            requester_name=(user.username or user.first_name) if user else "",
            reply_unknown=is_private,
        )

        if job is None:
            if self.stop_on_no_url:
                ctx.stop()
            return

        ctx.data['job_id'] = job.job_id
        ctx.data['job_status'] = job.status.value
        logger.info(f"[VIDEO] Job {job.job_id} settled with status {job.status.value}")
        ctx.stop()


async def handle_choice_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """CallbackQueryHandler entry point for inline keyboard answers."""
    query = update.callback_query
    if query is None:
        return

    await query.answer()

    decoded = decode_choice(query.data)
    orchestrator = get_orchestrator(context)
    if decoded is None or orchestrator is None:
        logger.warning(f"[VIDEO] Ignoring callback with data {query.data!r}")
        return

    token, index = decoded
    chat_id = query.message.chat.id if query.message else query.from_user.id
    logger.info(f"[VIDEO] Choice {index} for token {token} from user {query.from_user.id}")
    await orchestrator.handle_choice(chat_id, query.from_user.id, token, index)
