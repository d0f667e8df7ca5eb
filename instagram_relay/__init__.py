"""
Instagram inbox relay.

Polls the bot's Instagram direct inbox and forwards shared videos to the
Telegram chat linked to the sender.
"""

from instagram_relay.relay import InstagramRelay, build_client

__all__ = [
    'InstagramRelay',
    'build_client',
]
