"""
Chat channel contract and its Telegram implementation.

The core only needs to send text, send a file, edit a status message and
present a set of choices; transport details stay in this module.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import BadRequest, TelegramError

logger = logging.getLogger(__name__)

CALLBACK_SEPARATOR = ":"


class MediaKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"


VIDEO_CONTAINERS = {"mp4", "mov", "m4v"}
AUDIO_CONTAINERS = {"m4a", "mp3", "aac"}


def media_kind_for(path: Path, audio_only: bool = False) -> MediaKind:
    """Pick how a file is sent: players for mp4/m4a, plain documents otherwise."""
    ext = path.suffix.lstrip('.').lower()
    if audio_only:
        return MediaKind.AUDIO if ext in AUDIO_CONTAINERS else MediaKind.DOCUMENT
    return MediaKind.VIDEO if ext in VIDEO_CONTAINERS else MediaKind.DOCUMENT


def encode_choice(token: str, index: int) -> str:
    return f"{token}{CALLBACK_SEPARATOR}{index}"


def decode_choice(data: Optional[str]) -> Optional[tuple[str, int]]:
    """Parse callback data into (token, index); None if malformed."""
    if not data or CALLBACK_SEPARATOR not in data:
        return None
    token, _, raw_index = data.rpartition(CALLBACK_SEPARATOR)
    if not token or not raw_index.isdigit():
        return None
    return token, int(raw_index)


@dataclass(frozen=True)
class StatusRef:
    """Handle to a previously sent message that can be edited."""
    chat_id: int
    message_id: int


class ChatChannel(ABC):
    """What the pipeline needs from a messaging platform."""

    @abstractmethod
    async def send_text(self, chat_id: int, text: str) -> StatusRef:
        pass

    @abstractmethod
    async def edit_status(self, ref: StatusRef, text: str) -> None:
        pass

    @abstractmethod
    async def send_file(self, chat_id: int, path: Path, caption: str, kind: MediaKind) -> None:
        pass

    @abstractmethod
    async def present_choices(self, chat_id: int, token: str, text: str, options: tuple[str, ...]) -> StatusRef:
        """Show options; answers come back as callback data `encode_choice(token, index)`."""
        pass


class TelegramChannel(ChatChannel):
    """ChatChannel backed by a python-telegram-bot Bot."""

    # Uploads of large files need generous timeouts
    UPLOAD_TIMEOUTS = dict(read_timeout=120, write_timeout=120, connect_timeout=30)

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_text(self, chat_id: int, text: str) -> StatusRef:
        message = await self.bot.send_message(chat_id=chat_id, text=text)
        return StatusRef(chat_id=message.chat_id, message_id=message.message_id)

    async def edit_status(self, ref: StatusRef, text: str) -> None:
        try:
            await self.bot.edit_message_text(chat_id=ref.chat_id, message_id=ref.message_id, text=text)
        except BadRequest as e:
            # Editing to identical text is rejected by Telegram
            if "not modified" not in str(e).lower():
                logger.warning(f"[CHANNEL] Could not edit status {ref.message_id}: {e}")
        except TelegramError as e:
            logger.warning(f"[CHANNEL] Could not edit status {ref.message_id}: {e}")

    async def send_file(self, chat_id: int, path: Path, caption: str, kind: MediaKind) -> None:
        logger.info(f"[CHANNEL] Sending {kind.value} {path.name} ({path.stat().st_size} bytes) to {chat_id}")
        with open(path, 'rb') as fh:
            if kind == MediaKind.VIDEO:
                await self.bot.send_video(
                    chat_id=chat_id, video=fh, caption=caption,
                    supports_streaming=True, filename=path.name, **self.UPLOAD_TIMEOUTS,
                )
            elif kind == MediaKind.AUDIO:
                await self.bot.send_audio(
                    chat_id=chat_id, audio=fh, caption=caption,
                    filename=path.name, **self.UPLOAD_TIMEOUTS,
                )
            else:
                await self.bot.send_document(
                    chat_id=chat_id, document=fh, caption=caption,
                    filename=path.name, **self.UPLOAD_TIMEOUTS,
                )

    async def present_choices(self, chat_id: int, token: str, text: str, options: tuple[str, ...]) -> StatusRef:
        keyboard = [
            [InlineKeyboardButton(text=label, callback_data=encode_choice(token, index))]
            for index, label in enumerate(options)
        ]
        message = await self.bot.send_message(
            chat_id=chat_id, text=text, reply_markup=InlineKeyboardMarkup(keyboard),
        )
        return StatusRef(chat_id=message.chat_id, message_id=message.message_id)


class Delivery:
    """Sends a finished artifact to the requester."""

    def __init__(self, channel: ChatChannel):
        self.channel = channel

    async def deliver(self, chat_id: int, path: Path, caption: str, audio_only: bool = False) -> None:
        kind = media_kind_for(path, audio_only)
        await self.channel.send_file(chat_id, path, caption, kind)
        logger.info(f"[DELIVERY] ✓ Delivered {path.name} to {chat_id} as {kind.value}")
