"""
URL classification.

Maps arbitrary message text to the platform whose video URL it contains.
Total: anything that does not contain a supported URL is `Platform.UNKNOWN`.
"""

import re
from typing import Optional

from video_pipeline.models import Platform


def _host_pattern(hosts: str) -> re.Pattern:
    # host must not be glued to a longer name on the left and must end at a
    # path/query/port boundary or whitespace
    return re.compile(
        r'(?<![\w.@-])(?:https?://)?(?:[a-z0-9-]+\.)*(?:' + hosts + r')(?=[/?#:]|\s|$)\S*',
        re.IGNORECASE,
    )


PLATFORM_PATTERNS: dict[Platform, re.Pattern] = {
    Platform.YOUTUBE: _host_pattern(r'youtube\.com|youtu\.be|youtube-nocookie\.com'),
    Platform.FACEBOOK: _host_pattern(r'facebook\.com|fb\.watch|fb\.com'),
    Platform.LINKEDIN: _host_pattern(r'linkedin\.com|lnkd\.in'),
    Platform.TIKTOK: _host_pattern(r'tiktok\.com'),
}


def find_url(text: Optional[str]) -> Optional[tuple[Platform, str]]:
    """Return the first supported (platform, url) found in text, or None."""
    if not text:
        return None

    best = None
    for platform, pattern in PLATFORM_PATTERNS.items():
        match = pattern.search(text)
        if match and (best is None or match.start() < best[2]):
            best = (platform, match.group(0), match.start())

    if best is None:
        return None
    platform, url, _ = best
    if not url.lower().startswith(('http://', 'https://')):
        url = f"https://{url}"
    return platform, url


def classify(text: Optional[str]) -> Platform:
    """Classify text to a platform tag; never raises."""
    found = find_url(text)
    return found[0] if found else Platform.UNKNOWN


__all__ = ['PLATFORM_PATTERNS', 'find_url', 'classify']
