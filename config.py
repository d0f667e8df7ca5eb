"""
Runtime configuration for the relay bot.

All settings come from environment variables (optionally via a .env file).
"""

import os
import tempfile

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Telegram
TELEGRAM_BOT_TOKEN = os.getenv('TELEGRAM_BOT_TOKEN')
BOT_USERNAME = os.getenv('BOT_USERNAME', '@vidrelay_bot')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'WARNING').upper()

# Persistence / HTTP
DATABASE_PATH = os.getenv('DATABASE_PATH', 'relay.db')
PORT = int(os.getenv('PORT', 8080))
ENABLE_HEALTH_CHECK = os.getenv('ENABLE_HEALTH_CHECK', 'true').lower() == 'true'

# Downloads
# Telegram bots may upload at most 50MB through the public Bot API
DOWNLOAD_DIR = os.getenv('DOWNLOAD_DIR') or tempfile.gettempdir()
MAX_FILE_SIZE = int(_env_float('MAX_FILE_SIZE_MB', 50) * 1024 * 1024)
PIPELINE_TIMEOUT = _env_float('PIPELINE_TIMEOUT', 600)
CHOICE_TTL = _env_float('CHOICE_TTL', 600)
PROGRESS_INTERVAL = _env_float('PROGRESS_INTERVAL', 2.0)

# Merging
FFMPEG_BIN = os.getenv('FFMPEG_BIN', 'ffmpeg')
MERGE_AUDIO_BITRATE = os.getenv('MERGE_AUDIO_BITRATE', '128k')
MERGE_PRESET = os.getenv('MERGE_PRESET', 'veryfast')
MERGE_TIMEOUT = _env_float('MERGE_TIMEOUT', 300)

# yt-dlp cookie jars, rotated per request
YTDLP_COOKIE_FILES = [p.strip() for p in os.getenv('YTDLP_COOKIE_FILES', '').split(',') if p.strip()]

# Instagram inbox relay
INSTAGRAM_USERNAME = os.getenv('INSTAGRAM_USERNAME')
INSTAGRAM_PASSWORD = os.getenv('INSTAGRAM_PASSWORD')
INSTAGRAM_POLL_INTERVAL = _env_float('INSTAGRAM_POLL_INTERVAL', 60)
INSTAGRAM_SESSION_FILE = os.getenv('INSTAGRAM_SESSION_FILE')


def validate_config() -> None:
    """Validate required environment variables."""
    if not TELEGRAM_BOT_TOKEN:
        raise ValueError("TELEGRAM_BOT_TOKEN is not set in .env file")
