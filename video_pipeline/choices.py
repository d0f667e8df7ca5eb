"""
Pending choice table.

A PendingChoice ties one presented set of options to the requester who must
answer it. Tokens are single use: consuming, superseding or expiring a token
removes it for good.
"""

import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from video_pipeline.errors import StaleChoice
from video_pipeline.models import DownloadJob, Rendition

logger = logging.getLogger(__name__)


class ChoiceStage(str, Enum):
    TYPE = "type"
    QUALITY = "quality"


@dataclass
class PendingChoice:
    token: str
    requester_id: int
    stage: ChoiceStage
    job: DownloadJob
    options: tuple[str, ...]
    renditions: tuple[Rendition, ...] = ()
    candidates: tuple[Rendition, ...] = ()
    created_at: float = field(default_factory=time.monotonic)

    def expired(self, ttl: float, now: Optional[float] = None) -> bool:
        return ((now if now is not None else time.monotonic()) - self.created_at) > ttl


class PendingChoiceTable:
    """
    Token -> PendingChoice mapping with at most one live token per requester.

    All mutations go through one asyncio lock since a requester may race a
    new request against an in-flight answer.
    """

    def __init__(self, ttl: float = 600.0):
        self.ttl = ttl
        self._choices: dict[str, PendingChoice] = {}
        self._by_requester: dict[int, str] = {}
        self.lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._choices)

    def _remove(self, token: str) -> Optional[PendingChoice]:
        choice = self._choices.pop(token, None)
        if choice and self._by_requester.get(choice.requester_id) == token:
            del self._by_requester[choice.requester_id]
        return choice

    async def issue(
        self,
        requester_id: int,
        stage: ChoiceStage,
        job: DownloadJob,
        options: tuple[str, ...],
        renditions: tuple[Rendition, ...] = (),
        candidates: tuple[Rendition, ...] = (),
    ) -> tuple[PendingChoice, list[PendingChoice]]:
        """
        Register a new choice for a requester.

        Returns:
            (new choice, choices it superseded)
        """
        async with self.lock:
            superseded = []
            old_token = self._by_requester.get(requester_id)
            if old_token:
                old = self._remove(old_token)
                if old:
                    superseded.append(old)
                    logger.info(f"[CHOICE] Token {old_token} superseded for requester {requester_id}")

            token = secrets.token_urlsafe(8)
            while token in self._choices:
                token = secrets.token_urlsafe(8)

            choice = PendingChoice(
                token=token,
                requester_id=requester_id,
                stage=stage,
                job=job,
                options=tuple(options),
                renditions=tuple(renditions),
                candidates=tuple(candidates),
            )
            self._choices[token] = choice
            self._by_requester[requester_id] = token
            logger.debug(f"[CHOICE] Issued {stage.value} token {token} for requester {requester_id}")
            return choice, superseded

    async def consume(self, token: str, requester_id: int, index: int) -> PendingChoice:
        """
        Take a choice out of the table.

        Raises:
            StaleChoice: unknown/expired token, another requester's token,
                or an index outside the presented options. Rejections leave
                the table untouched; expired entries are left for
                `purge_expired` so their jobs get cleaned up.
        """
        async with self.lock:
            choice = self._choices.get(token)
            if choice is None:
                raise StaleChoice(f"unknown token {token}")
            if choice.requester_id != requester_id:
                raise StaleChoice(f"token {token} belongs to another requester")
            if choice.expired(self.ttl):
                raise StaleChoice(f"token {token} expired")
            if not 0 <= index < len(choice.options):
                raise StaleChoice(f"index {index} out of range for token {token}")

            self._remove(token)
            logger.debug(f"[CHOICE] Consumed token {token} (index {index})")
            return choice

    async def invalidate_requester(self, requester_id: int) -> Optional[PendingChoice]:
        """Drop the requester's live token, returning it if there was one."""
        async with self.lock:
            token = self._by_requester.get(requester_id)
            return self._remove(token) if token else None

    async def purge_expired(self) -> list[PendingChoice]:
        """Remove and return every expired choice."""
        async with self.lock:
            now = time.monotonic()
            expired = [c for c in self._choices.values() if c.expired(self.ttl, now)]
            for choice in expired:
                self._remove(choice.token)
            if expired:
                logger.info(f"[CHOICE] Purged {len(expired)} expired choice(s)")
            return expired

    async def invalidate_job(self, job: DownloadJob) -> list[PendingChoice]:
        """Drop every token still pointing at a job."""
        async with self.lock:
            stale = [c for c in self._choices.values() if c.job is job]
            for choice in stale:
                self._remove(choice.token)
            return stale
