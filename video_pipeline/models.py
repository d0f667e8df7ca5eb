"""Data model shared by the download pipeline components."""

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from video_pipeline.workspace import TempWorkspace


class Platform(str, Enum):
    YOUTUBE = "youtube"
    FACEBOOK = "facebook"
    LINKEDIN = "linkedin"
    TIKTOK = "tiktok"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return {
            Platform.YOUTUBE: "YouTube",
            Platform.FACEBOOK: "Facebook",
            Platform.LINKEDIN: "LinkedIn",
            Platform.TIKTOK: "TikTok",
        }.get(self, "Unknown")


_QUALITY_RE = re.compile(r'(\d+)')


@dataclass(frozen=True)
class Rendition:
    """
    One concrete encoded variant of a source video.

    `quality_label` is the human label ("720p", "1080p60"); audio-only
    renditions usually have an empty label.
    """
    source_url: str
    container: str
    quality_label: str = ""
    has_audio: bool = False
    has_video: bool = False
    approx_bitrate: float = 0.0
    format_id: str = ""
    filesize: Optional[int] = None
    http_headers: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def quality(self) -> int:
        """Numeric quality (vertical resolution) parsed from the label, 0 if absent."""
        match = _QUALITY_RE.search(self.quality_label or "")
        return int(match.group(1)) if match else 0

    @property
    def is_audio_only(self) -> bool:
        return self.has_audio and not self.has_video


@dataclass(frozen=True)
class ExtractionResult:
    """
    Output of a platform extractor.

    YouTube yields `renditions`; the other platforms resolve a single
    `direct_url`.
    """
    platform: Platform
    source_url: str
    title: str = ""
    renditions: tuple[Rendition, ...] = ()
    direct_url: Optional[str] = None
    provider_name: str = ""
    http_headers: dict = field(default_factory=dict, compare=False, hash=False)

    def as_rendition(self) -> Rendition:
        """Wrap a resolved direct URL as a single muxed rendition."""
        return Rendition(
            source_url=self.direct_url or "",
            container="mp4",
            has_audio=True,
            has_video=True,
            http_headers=dict(self.http_headers),
        )


class JobStatus(str, Enum):
    CREATED = "created"
    NEGOTIATING = "negotiating"
    FETCHING = "fetching"
    MERGING = "merging"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    FAILED = "failed"
    SUPERSEDED = "superseded"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.SUPERSEDED)


@dataclass
class DownloadJob:
    """
    A single pipeline execution for one requester and one source URL.

    The job exclusively owns its workspace; every temp file it creates lives
    there and is removed when the job reaches a terminal state.
    """
    requester_id: int
    chat_id: int
    platform: Platform
    source_url: str
    workspace: TempWorkspace
    title: str = ""
    requester_name: str = ""
    source_name: str = ""
    selected_rendition: Optional[Rendition] = None
    audio_rendition: Optional[Rendition] = None
    status: JobStatus = JobStatus.CREATED
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    # chat-side handle of the message used for status updates
    status_ref: Any = None

    @property
    def display_name(self) -> str:
        return self.source_name or self.platform.display_name

    @property
    def temp_paths(self) -> set:
        return self.workspace.paths

    @property
    def needs_merge(self) -> bool:
        return self.selected_rendition is not None and self.audio_rendition is not None

    def finish(self, status: JobStatus) -> None:
        """Move to a terminal state and release all temp files."""
        self.status = status
        self.workspace.cleanup()
