"""
Rotating cookie context for extractor requests.

Holds a list of Netscape-format cookie jars and hands them out round-robin,
one per extraction. An empty pool means requests go out without cookies.
"""

import logging
import os
from itertools import cycle
from threading import Lock
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class CookiePool:
    """Thread-safe round-robin over configured cookie files."""

    def __init__(self, cookie_files: Iterable[str] = ()):
        self.cookie_files = [path for path in cookie_files if path]
        self._cycle = cycle(self.cookie_files) if self.cookie_files else None
        self.lock = Lock()
        logger.info(f"[COOKIES] CookiePool initialized with {len(self.cookie_files)} cookie file(s)")

    def next_cookie_file(self) -> Optional[str]:
        """Return the next cookie file that still exists, or None."""
        if self._cycle is None:
            return None
        with self.lock:
            for _ in range(len(self.cookie_files)):
                path = next(self._cycle)
                if os.path.exists(path):
                    return path
                logger.warning(f"[COOKIES] Cookie file missing, skipping: {path}")
        return None

    def apply(self, ydl_opts: dict) -> dict:
        """Return a copy of yt-dlp options with the next cookie jar attached."""
        opts = dict(ydl_opts)
        cookie_file = self.next_cookie_file()
        if cookie_file:
            opts['cookiefile'] = cookie_file
        return opts
