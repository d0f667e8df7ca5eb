"""
RapidAPI TikTok No Watermark2 Provider
Keyed fallback for TikTok using tiktok-video-no-watermark2.p.rapidapi.com
Supports HD video quality
"""

import json
import logging
import http.client
from urllib.parse import quote

from video_pipeline.errors import NoDownloadableMedia, TransientError
from video_pipeline.models import ExtractionResult, Platform
from video_pipeline.services.tiktok import TikTokProvider

logger = logging.getLogger(__name__)


class TikTokNoWatermark2Provider(TikTokProvider):
    """Provider using RapidAPI's tiktok-video-no-watermark2.p.rapidapi.com"""

    PROVIDER_NAME = "TIKTOK_NOWATERMARK2"
    DEFAULT_PRIORITY = 80  # Below yt-dlp, used as fallback

    def __init__(self, api_key: str = None, cookie_pool=None, api_host: str = 'tiktok-video-no-watermark2.p.rapidapi.com'):
        super().__init__("TikTok-NoWatermark2", api_key=api_key, cookie_pool=cookie_pool)
        self.api_host = api_host

    def extract(self, tiktok_url: str) -> ExtractionResult:
        """
        Resolve a TikTok URL through the RapidAPI service.

        Priority order:
        1. 'hdplay' - HD quality (if available)
        2. 'play' - Standard quality without watermark
        3. 'wmplay' - With watermark (last resort)
        """
        logger.info(f"[{self.name}] ========== PROVIDER START ==========")
        logger.info(f"[{self.name}] TikTok URL: {tiktok_url}")

        conn = None
        try:
            conn = http.client.HTTPSConnection(self.api_host, timeout=30)

            # hd=1 requests the HD rendition
            endpoint = f"/?url={quote(tiktok_url, safe='')}&hd=1"
            headers = {
                'x-rapidapi-key': self.api_key,
                'x-rapidapi-host': self.api_host
            }

            logger.info(f"[{self.name}] Sending GET request to {self.api_host}...")
            conn.request("GET", endpoint, headers=headers)
            res = conn.getresponse()
            data = res.read()
            logger.info(f"[{self.name}] Response status: {res.status}, {len(data)} bytes")

        except (OSError, http.client.HTTPException) as e:
            logger.error(f"[{self.name}] ✗ Error calling API: {type(e).__name__}: {e}")
            raise TransientError(f"{self.name} request failed", cause=e) from e
        finally:
            if conn:
                conn.close()

        if res.status == 429 or res.status >= 500:
            logger.error(f"[{self.name}] ✗ API returned status {res.status}")
            raise TransientError(f"{self.name} returned HTTP {res.status}")
        if res.status != 200:
            logger.error(f"[{self.name}] ✗ API returned status {res.status}: {data[:500]!r}")
            raise NoDownloadableMedia(f"{self.name} returned HTTP {res.status}")

        try:
            response_json = json.loads(data.decode('utf-8'))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"[{self.name}] ✗ JSON decode error: {e}")
            raise TransientError(f"{self.name} returned malformed JSON", cause=e) from e

        # Response structure: {"code": 0, "msg": "success", "data": {"hdplay": "...", "play": "...", "wmplay": "..."}}
        if response_json.get('code') != 0:
            logger.error(f"[{self.name}] ✗ API returned error code {response_json.get('code')}: {response_json.get('msg', 'No message')}")
            raise NoDownloadableMedia(response_json.get('msg') or "API error")

        data_obj = response_json.get('data') or {}
        video_url = data_obj.get('hdplay') or data_obj.get('play') or data_obj.get('wmplay')

        if not video_url:
            logger.error(f"[{self.name}] ✗ No 'hdplay', 'play', or 'wmplay' URL found. Keys: {list(data_obj.keys())}")
            raise NoDownloadableMedia("no playable URL in response")

        logger.info(f"[{self.name}] ✓ Successfully extracted video URL")
        logger.info(f"[{self.name}] ========== PROVIDER SUCCESS ==========")
        return ExtractionResult(
            platform=Platform.TIKTOK,
            source_url=tiktok_url,
            title=data_obj.get('title') or "",
            direct_url=video_url,
            provider_name=self.name,
        )
