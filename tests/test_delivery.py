"""
Tests for the Telegram channel and callback data encoding.
"""
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from telegram.error import BadRequest, NetworkError

from video_pipeline.delivery import (
    Delivery,
    MediaKind,
    StatusRef,
    TelegramChannel,
    decode_choice,
    encode_choice,
    media_kind_for,
)


@pytest.fixture
def bot():
    bot = MagicMock()
    sent = SimpleNamespace(chat_id=100, message_id=42)
    bot.send_message = AsyncMock(return_value=sent)
    bot.edit_message_text = AsyncMock()
    bot.send_video = AsyncMock()
    bot.send_audio = AsyncMock()
    bot.send_document = AsyncMock()
    return bot


class TestCallbackData:

    def test_encode_decode(self):
        assert decode_choice(encode_choice("abc", 3)) == ("abc", 3)

    @pytest.mark.parametrize("data", [None, "", "abc", ":1", "abc:x", "abc:-1"])
    def test_malformed(self, data):
        assert decode_choice(data) is None


class TestMediaKind:

    def test_video_containers(self):
        assert media_kind_for(Path("a.mp4")) == MediaKind.VIDEO
        assert media_kind_for(Path("a.webm")) == MediaKind.DOCUMENT

    def test_audio_only(self):
        assert media_kind_for(Path("a.m4a"), audio_only=True) == MediaKind.AUDIO
        assert media_kind_for(Path("a.webm"), audio_only=True) == MediaKind.DOCUMENT


class TestTelegramChannel:

    @pytest.mark.asyncio
    async def test_send_text_returns_ref(self, bot):
        ref = await TelegramChannel(bot).send_text(100, "hello")
        assert ref == StatusRef(chat_id=100, message_id=42)

    @pytest.mark.asyncio
    async def test_edit_ignores_not_modified(self, bot):
        bot.edit_message_text.side_effect = BadRequest("Message is not modified")
        await TelegramChannel(bot).edit_status(StatusRef(100, 42), "same")

    @pytest.mark.asyncio
    async def test_edit_swallows_transport_errors(self, bot):
        bot.edit_message_text.side_effect = NetworkError("reset")
        await TelegramChannel(bot).edit_status(StatusRef(100, 42), "text")

    @pytest.mark.asyncio
    async def test_choices_keyboard(self, bot):
        await TelegramChannel(bot).present_choices(100, "tok", "Pick", ("Video", "Audio"))

        markup = bot.send_message.await_args.kwargs["reply_markup"]
        data = [row[0].callback_data for row in markup.inline_keyboard]
        labels = [row[0].text for row in markup.inline_keyboard]
        assert data == ["tok:0", "tok:1"]
        assert labels == ["Video", "Audio"]

    @pytest.mark.asyncio
    async def test_deliver_picks_upload_method(self, bot, tmp_path):
        video = tmp_path / "clip.mp4"
        audio = tmp_path / "song.m4a"
        other = tmp_path / "song.webm"
        for p in (video, audio, other):
            p.write_bytes(b"data")
        delivery = Delivery(TelegramChannel(bot))

        await delivery.deliver(100, video, "cap")
        await delivery.deliver(100, audio, "cap", audio_only=True)
        await delivery.deliver(100, other, "cap", audio_only=True)

        assert bot.send_video.await_args.kwargs["supports_streaming"] is True
        assert bot.send_audio.await_args.kwargs["filename"] == "song.m4a"
        assert bot.send_document.await_args.kwargs["filename"] == "song.webm"
