"""
Interactive format negotiation.

    AwaitingTypeChoice --audio--------------------------> Resolved
    AwaitingTypeChoice --video--> AwaitingQualityChoice --> Resolved

Each waiting state is a PendingChoice token; answering consumes it.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from video_pipeline.choices import ChoiceStage, PendingChoice, PendingChoiceTable
from video_pipeline.errors import NoDownloadableMedia, StaleChoice
from video_pipeline.models import DownloadJob, JobStatus, Rendition

logger = logging.getLogger(__name__)

AUDIO_ONLY = 0
VIDEO_AND_AUDIO = 1
TYPE_OPTIONS = ("🎵 Audio only", "🎬 Video + audio")


def best_audio(renditions: Iterable[Rendition]) -> Optional[Rendition]:
    """Highest-bitrate audio-only rendition, or None."""
    audio = [r for r in renditions if r.is_audio_only]
    if not audio:
        return None
    return max(audio, key=lambda r: (r.approx_bitrate, r.format_id))


def dedupe_by_quality(renditions: Iterable[Rendition]) -> list[Rendition]:
    """
    Video renditions, one per quality label, best quality first.

    Within a label a variant that already carries audio wins (no merge
    needed), then the higher bitrate. Idempotent.
    """
    best: dict[str, Rendition] = {}
    for rendition in renditions:
        if not rendition.has_video or not rendition.quality_label:
            continue
        current = best.get(rendition.quality_label)
        if current is None or _preference(rendition) > _preference(current):
            best[rendition.quality_label] = rendition

    return sorted(
        best.values(),
        key=lambda r: (r.quality, r.approx_bitrate, r.quality_label),
        reverse=True,
    )


def _preference(rendition: Rendition) -> tuple:
    return (rendition.has_audio, rendition.approx_bitrate, rendition.format_id)


def quality_option_label(rendition: Rendition) -> str:
    size = f" ~{rendition.filesize / (1024 * 1024):.0f}MB" if rendition.filesize else ""
    return f"{rendition.quality_label} ({rendition.container}){size}"


@dataclass
class ChoicePrompt:
    """Options to present to the requester, keyed by a live token."""
    token: str
    text: str
    options: tuple[str, ...]
    superseded: list[PendingChoice]


@dataclass
class Resolution:
    """Negotiation finished; the job carries its selected rendition(s)."""
    job: DownloadJob


Step = Union[ChoicePrompt, Resolution]


class FormatNegotiator:
    """Drives the type -> quality choice for one job at a time per requester."""

    def __init__(self, table: PendingChoiceTable):
        self.table = table

    async def begin(self, job: DownloadJob, renditions: Iterable[Rendition]) -> ChoicePrompt:
        """Enter AwaitingTypeChoice, superseding any earlier token of the requester."""
        renditions = tuple(renditions)
        if not renditions:
            raise NoDownloadableMedia("no renditions to choose from")

        job.status = JobStatus.NEGOTIATING
        choice, superseded = await self.table.issue(
            job.requester_id, ChoiceStage.TYPE, job, TYPE_OPTIONS, renditions=renditions,
        )
        logger.info(f"[NEGOTIATE] Job {job.job_id}: awaiting type choice ({len(renditions)} renditions)")
        return ChoicePrompt(
            token=choice.token,
            text=f"🎞 {job.title or 'Video'}\nWhat would you like to download?",
            options=choice.options,
            superseded=superseded,
        )

    async def answer(self, token: str, requester_id: int, index: int) -> Step:
        """
        Apply the requester's answer to a live token.

        Raises:
            StaleChoice: token not live for this requester
            NoDownloadableMedia: the chosen path has nothing to download
        """
        choice = await self.table.consume(token, requester_id, index)
        return await self.advance(choice, index)

    async def advance(self, choice: PendingChoice, index: int) -> Step:
        """Move a consumed choice's job to its next state."""
        job = choice.job

        if choice.stage == ChoiceStage.TYPE:
            if index == AUDIO_ONLY:
                return self._resolve_audio(job, choice.renditions)
            return await self._offer_qualities(job, choice.renditions)

        if choice.stage == ChoiceStage.QUALITY:
            return self._resolve_quality(job, choice.renditions, choice.candidates[index])

        raise StaleChoice(f"unexpected stage {choice.stage}")

    def _resolve_audio(self, job: DownloadJob, renditions: tuple[Rendition, ...]) -> Resolution:
        audio = best_audio(renditions)
        if audio is None:
            raise NoDownloadableMedia("no audio-only rendition")
        job.selected_rendition = audio
        job.audio_rendition = None
        logger.info(f"[NEGOTIATE] Job {job.job_id}: resolved audio-only ({audio.format_id}, {audio.approx_bitrate:.0f}kbps)")
        return Resolution(job)

    async def _offer_qualities(self, job: DownloadJob, renditions: tuple[Rendition, ...]) -> ChoicePrompt:
        candidates = dedupe_by_quality(renditions)
        if not candidates:
            raise NoDownloadableMedia("no video renditions")

        options = tuple(quality_option_label(r) for r in candidates)
        choice, superseded = await self.table.issue(
            job.requester_id, ChoiceStage.QUALITY, job, options,
            renditions=renditions, candidates=candidates,
        )
        logger.info(f"[NEGOTIATE] Job {job.job_id}: awaiting quality choice ({len(candidates)} options)")
        return ChoicePrompt(
            token=choice.token,
            text="📺 Choose a quality:",
            options=options,
            superseded=superseded,
        )

    def _resolve_quality(self, job: DownloadJob, renditions: tuple[Rendition, ...], chosen: Rendition) -> Resolution:
        job.selected_rendition = chosen
        job.audio_rendition = None
        if not chosen.has_audio:
            job.audio_rendition = best_audio(renditions)
            if job.audio_rendition is None:
                logger.warning(f"[NEGOTIATE] Job {job.job_id}: no audio rendition to merge, delivering video only")
        logger.info(
            f"[NEGOTIATE] Job {job.job_id}: resolved {chosen.quality_label} ({chosen.format_id}), "
            f"merge={'yes' if job.needs_merge else 'no'}"
        )
        return Resolution(job)
