"""
Instagram account linking.

`/connect_instagram` puts the sender into a one-shot "awaiting username"
state kept in their own user_data; the next text message from that sender
is stored as their linked Instagram account.
"""

import logging
import re

from telegram import Update
from telegram.ext import ContextTypes

from pipeline import PipelineContext, PipelineHandler

logger = logging.getLogger(__name__)

AWAITING_KEY = 'awaiting_instagram_username'
STORE_KEY = 'user_store'

# Instagram usernames: letters, digits, periods and underscores, max 30
USERNAME_PATTERN = re.compile(r'^@?([A-Za-z0-9._]{1,30})$')


async def connect_instagram_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """CommandHandler for /connect_instagram."""
    message = update.message
    if not message or not message.from_user:
        return

    context.user_data[AWAITING_KEY] = True
    logger.info(f"[LINK] User {message.from_user.id} started Instagram linking")
    await message.reply_text("Please send your Instagram username to connect your account.")


class LinkAccountHandler(PipelineHandler):
    """Consumes the username reply that follows /connect_instagram."""

    HANDLER_NAME = "LINK_ACCOUNT"
    DEFAULT_PRIORITY = 90

    async def should_process(self, ctx: PipelineContext) -> bool:
        user_data = ctx.context.user_data
        return ctx.message_text is not None and bool(user_data and user_data.get(AWAITING_KEY))

    async def process(self, ctx: PipelineContext) -> None:
        message = ctx.message
        text = ctx.message_text.strip()
        ctx.context.user_data.pop(AWAITING_KEY, None)
        ctx.stop()

        match = USERNAME_PATTERN.match(text)
        if not match:
            logger.info(f"[LINK] Rejected username {text!r} from user {ctx.requester_id}")
            await message.reply_text(
                "That doesn't look like an Instagram username. Send /connect_instagram to try again."
            )
            return

        store = ctx.context.bot_data.get(STORE_KEY)
        if store is None:
            logger.error("[LINK] ✗ User store not initialized")
            await message.reply_text("Sorry, account linking is unavailable right now.")
            return

        username = match.group(1)
        store.upsert_link(ctx.requester_id, username)
        ctx.data['linked_account'] = username.lower()
        logger.info(f"[LINK] ✓ User {ctx.requester_id} linked to Instagram @{username.lower()}")
        await message.reply_text(
            f"✅ Instagram account @{username.lower()} connected! "
            f"Share videos with the bot's Instagram account to get them here."
        )
