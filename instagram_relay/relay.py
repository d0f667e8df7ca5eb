"""Direct-message poller feeding shared Instagram media into the delivery path."""

import asyncio
import logging
import os
from collections import deque
from typing import Optional

from instagrapi import Client
from instagrapi.exceptions import LoginRequired

logger = logging.getLogger(__name__)

MEDIA_ITEM_TYPES = ("media_share", "clip")
DEFAULT_CAPTION = "Here's your Instagram video!"
HANDLED_LIMIT = 1000


def build_client(session_file: Optional[str] = None) -> Client:
    """Create an instagrapi client, reusing a saved session when there is one."""
    client = Client()
    if session_file and os.path.exists(session_file):
        client.load_settings(session_file)
        logger.info(f"[RELAY] Loaded Instagram session from {session_file}")
    return client


class InstagramRelay:
    """
    Bridges the Instagram inbox to Telegram.

    For each unread media share: an unlinked sender is asked (on Instagram)
    to link their account first; a linked sender gets the video delivered
    to their Telegram chat. Handled threads are marked seen.
    """

    def __init__(
        self,
        client: Client,
        store,
        orchestrator,
        bot_username: str = "",
        session_file: Optional[str] = None,
        handled_limit: int = HANDLED_LIMIT,
    ):
        self.client = client
        self.store = store
        self.orchestrator = orchestrator
        self.bot_username = bot_username.lstrip('@')
        self.session_file = session_file
        self.logged_in = False
        # most recent handled message ids, oldest evicted first
        self._handled: set[str] = set()
        self._handled_order: deque[str] = deque(maxlen=handled_limit)

    @property
    def link_instructions(self) -> str:
        bot = f"t.me/{self.bot_username}" if self.bot_username else "our Telegram bot"
        return (
            f"Please connect your Telegram account first: open {bot}, "
            f"send /connect_instagram and reply with your Instagram username."
        )

    async def login(self, username: str, password: str) -> None:
        await asyncio.to_thread(self.client.login, username, password)
        self.logged_in = True
        if self.session_file:
            await asyncio.to_thread(self.client.dump_settings, self.session_file)
        logger.info(f"[RELAY] ✓ Logged in to Instagram as {username}")

    async def poll_once(self) -> int:
        """
        Process every unread thread once.

        Returns:
            Number of videos delivered to Telegram
        """
        threads = await asyncio.to_thread(self.client.direct_threads, 20, "unread")
        logger.debug(f"[RELAY] {len(threads)} unread thread(s)")

        delivered = 0
        for thread in threads:
            try:
                delivered += await self._process_thread(thread)
            except LoginRequired:
                raise
            except Exception as e:
                logger.error(f"[RELAY] ✗ Failed to process thread {thread.id}: {type(e).__name__}: {e}", exc_info=True)
        return delivered

    async def _process_thread(self, thread) -> int:
        own_id = str(self.client.user_id)
        senders = {str(user.pk): user for user in thread.users}
        delivered = 0
        handled_any = False

        for message in thread.messages:
            if message.id in self._handled or str(message.user_id) == own_id:
                continue
            if message.item_type not in MEDIA_ITEM_TYPES:
                continue

            media = message.media_share or message.clip
            if media is None:
                continue

            self._remember(message.id)
            handled_any = True
            sender = senders.get(str(message.user_id))
            username = sender.username if sender else None

            link = self.store.find_by_external_account(str(message.user_id), username)
            if link is None:
                logger.info(f"[RELAY] Unlinked sender {username or message.user_id}, sending instructions")
                await asyncio.to_thread(self.client.direct_send, self.link_instructions, user_ids=[int(message.user_id)])
                continue

            if await self._deliver(link.requester_id, media.pk):
                delivered += 1

        if handled_any:
            await asyncio.to_thread(self.client.direct_send_seen, int(thread.id))
        return delivered

    def _remember(self, message_id: str) -> None:
        if len(self._handled_order) == self._handled_order.maxlen:
            self._handled.discard(self._handled_order[0])
        self._handled_order.append(message_id)
        self._handled.add(message_id)

    async def _deliver(
self, chat_id: int, media_pk) -> bool:
        info = await asyncio.to_thread(self.client.media_info, media_pk)
        video_url = str(info.video_url) if info.video_url else None
        if not video_url:
            logger.info(f"[RELAY] Media {media_pk} has no video, skipping")
            return False

        caption = (info.caption_text or DEFAULT_CAPTION).strip() or DEFAULT_CAPTION
        logger.info(f"[RELAY] Delivering media {media_pk} to chat {chat_id}")
        return await self.orchestrator.deliver_remote(chat_id, video_url, caption, source_name="Instagram")

    async def run(self, username: str, password: str, interval: float = 60.0) -> None:
        """Poll forever; logs in lazily and again whenever the session expires."""
        while True:
            try:
                if not self.logged_in:
                    await self.login(username, password)
                await self.poll_once()
            except LoginRequired:
                logger.warning("[RELAY] Instagram session expired, will log in again")
                self.logged_in = False
            except Exception as e:
                logger.error(f"[RELAY] ✗ Instagram polling failed: {type(e).__name__}: {e}", exc_info=True)
            await asyncio.sleep(interval)
