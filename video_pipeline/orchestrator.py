"""
Session orchestrator.

Drives one pipeline per inbound URL:

    classify -> extract -> (YouTube) negotiate -> fetch -> (merge) -> deliver

and guarantees that every exit path (success, failure, supersession,
timeout) releases the job's temp files exactly once and sends the requester
exactly one terminal message.
"""

import asyncio
import logging
import re
from collections import defaultdict
from pathlib import Path
from typing import Awaitable, Callable, Optional

from video_pipeline.choices import PendingChoice
from video_pipeline.classifier import find_url
from video_pipeline.delivery import ChatChannel, Delivery
from video_pipeline.downloader import Fetcher, ProgressTracker
from video_pipeline.errors import MediaError, MediaTooLarge, PipelineTimeout, StaleChoice
from video_pipeline.merger import Merger
from video_pipeline.models import DownloadJob, JobStatus, Platform, Rendition
from video_pipeline.negotiator import TYPE_OPTIONS, ChoicePrompt, FormatNegotiator
from video_pipeline.router import ServiceRouter
from video_pipeline.workspace import TempWorkspace

logger = logging.getLogger(__name__)

UNSUPPORTED_MESSAGE = (
    "Sorry, this link is not supported yet. Currently, I can only download "
    "YouTube, Facebook, LinkedIn, and TikTok videos."
)
STALE_CHOICE_MESSAGE = "⌛ This selection is no longer valid. Please send the link again."
SUPERSEDED_MESSAGE = "⏹ Cancelled: you sent a new link."
GENERIC_FAILURE_MESSAGE = "😿 Sorry, something went wrong. Please try again."

FAILURE_MESSAGES = {
    "invalid_url": "😿 Sorry, that doesn't look like a valid {platform} video link. Please check the URL and try again.",
    "no_media": "😿 Sorry, there was an error downloading the {platform} video. Please make sure the video is public and try again.",
    "transient": "😿 Sorry, {platform} didn't respond properly. This is usually temporary, please try again in a moment.",
    "timeout": "⏱ Sorry, this {platform} download took too long and was stopped. Please try again later.",
    "fetch_failed": "😿 Sorry, I couldn't save this {platform} video. Please try again later.",
    "too_large": "😿 Sorry, this file is too big for me to send (max {max_mb}MB). Try a lower quality.",
    "merge_failed": "😿 Sorry, I couldn't combine audio and video for this {platform} video. Try another quality.",
    "stale_choice": STALE_CHOICE_MESSAGE,
}

URLISH = re.compile(r'https?://|www\.', re.IGNORECASE)
CAPTION_LIMIT = 1024


def safe_filename(title: str, fallback: str = "video") -> str:
    name = re.sub(r'[^\w\s.-]', '', title or "", flags=re.UNICODE).strip()
    name = re.sub(r'\s+', ' ', name)[:80].strip(' .')
    return name or fallback


def failure_message(error: BaseException, platform_name: str, max_size: Optional[int] = None) -> str:
    """Exactly one user-facing text per failure; never the raw error."""
    if not isinstance(error, MediaError):
        return GENERIC_FAILURE_MESSAGE
    template = FAILURE_MESSAGES.get(error.kind, GENERIC_FAILURE_MESSAGE)
    max_mb = (max_size or 0) // (1024 * 1024)
    return template.format(platform=platform_name, max_mb=max_mb)


class SessionOrchestrator:
    """
    Owns the per-requester active job and wires the pipeline components.

    At most one job per requester is active; a new request supersedes the
    previous one (cancelling it if it is running, discarding it if it is
    waiting for a choice).
    """

    def __init__(
        self,
        router: ServiceRouter,
        negotiator: FormatNegotiator,
        fetcher: Fetcher,
        merger: Merger,
        channel: ChatChannel,
        store=None,
        download_dir: Optional[str] = None,
        pipeline_timeout: float = 600.0,
        progress_interval: float = 2.0,
    ):
        self.router = router
        self.negotiator = negotiator
        self.table = negotiator.table
        self.fetcher = fetcher
        self.merger = merger
        self.channel = channel
        self.delivery = Delivery(channel)
        self.store = store
        self.download_dir = download_dir
        self.pipeline_timeout = pipeline_timeout
        self.progress_interval = progress_interval

        self._active: dict[int, DownloadJob] = {}
        self._tasks: dict[int, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle_url(
        self,
        chat_id: int,
        requester_id: int,
        text: str,
        requester_name: str = "",
        reply_unknown: bool = True,
    ) -> Optional[DownloadJob]:
        """
        Process one inbound message.

        Returns the job created for it, or None when the text holds no
        supported URL (answered with guidance when `reply_unknown` and the
        text looks like a link).
        """
        found = find_url(text)
        if found is None:
            if reply_unknown and URLISH.search(text or ""):
                logger.info(f"[ORCH] Unsupported link from requester {requester_id}")
                await self.channel.send_text(chat_id, UNSUPPORTED_MESSAGE)
            return None

        platform, url = found
        if not self.router.supports(platform):
            logger.warning(f"[ORCH] No service loaded for {platform.value}, treating as unsupported")
            await self.channel.send_text(chat_id, UNSUPPORTED_MESSAGE)
            return None

        if self.store is not None:
            await asyncio.to_thread(self.store.ensure_user, requester_id)

        job = DownloadJob(
            requester_id=requester_id,
            chat_id=chat_id,
            platform=platform,
            source_url=url,
            workspace=TempWorkspace(self.download_dir),
            requester_name=requester_name,
        )
        logger.info(f"[ORCH] Job {job.job_id}: {platform.value} {url} for requester {requester_id}")

        await self._start(job, lambda: self._acquire(job))
        return job

    async def handle_choice(self, chat_id: int, requester_id: int, token: str, index: int) -> None:
        """Apply an answer to a presented choice."""
        await self.expire_stale_choices()

        try:
            choice = await self.table.consume(token, requester_id, index)
        except StaleChoice as e:
            logger.info(f"[ORCH] Rejected choice from requester {requester_id}: {e}")
            await self.channel.send_text(chat_id, STALE_CHOICE_MESSAGE)
            return

        job = choice.job
        if job.status_ref is not None:
            await self.channel.edit_status(job.status_ref, f"✔️ {choice.options[index]}")
        await self._start(job, lambda: self._after_choice(choice, index), supersede=False)

    async def deliver_remote(self, chat_id: int, media_url: str, caption: str, source_name: str = "Instagram") -> bool:
        """
        Fetch a resolved direct media URL and deliver it to a chat.

        Used by the inbox relay and the HTTP route. These deliveries do not
        supersede the chat user's own requests.
        """
        job = DownloadJob(
            requester_id=chat_id,
            chat_id=chat_id,
            platform=Platform.UNKNOWN,
            source_url=media_url,
            workspace=TempWorkspace(self.download_dir),
            title=caption,
            source_name=source_name,
            selected_rendition=Rendition(source_url=media_url, container="mp4", has_audio=True, has_video=True),
        )
        logger.info(f"[ORCH] Job {job.job_id}: remote {source_name} delivery to chat {chat_id}")
        job.status_ref = await self.channel.send_text(chat_id, f"Processing your {source_name} video...")
        await self._guard(job, lambda: self._execute(job, caption=caption))
        return job.status == JobStatus.COMPLETED

    async def expire_stale_choices(self) -> int:
        """Fail and clean up jobs whose choice token outlived its TTL."""
        expired = await self.table.purge_expired()
        for choice in expired:
            job = choice.job
            if job.status.is_terminal:
                continue
            logger.info(f"[ORCH] Job {job.job_id}: choice expired")
            job.finish(JobStatus.FAILED)
            self._release(job)
            await self._notify(job, STALE_CHOICE_MESSAGE)
        return len(expired)

    async def run_expiry_loop(self, interval: float = 60.0) -> None:
        """Periodically expire abandoned choices."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.expire_stale_choices()
            except Exception as e:
                logger.error(f"[ORCH] Error expiring choices: {type(e).__name__}: {e}", exc_info=True)

    def active_job(self, requester_id: int) -> Optional[DownloadJob]:
        return self._active.get(requester_id)

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    async def _start(self, job: DownloadJob, work: Callable[[], Awaitable[None]], supersede: bool = True) -> None:
        """
        Register the job as the requester's active one and run `work` as a cancellable task.

        Locking is per requester so a slow chat call while superseding never
        holds up anyone else.
        """
        async with self._locks[job.requester_id]:
            if supersede:
                await self._supersede(job.requester_id)
            elif job.status.is_terminal or self._active.get(job.requester_id, job) is not job:
                # a newer request took over while the answer was in flight
                logger.info(f"[ORCH] Job {job.job_id}: dropping answer for a job that is no longer active")
                job.workspace.cleanup()
                await self.channel.send_text(job.chat_id, STALE_CHOICE_MESSAGE)
                return
            self._active[job.requester_id] = job
            task = asyncio.create_task(self._guard(job, work))
            self._tasks[job.requester_id] = task

        # wait() does not raise if the task gets cancelled by a newer request
        await asyncio.wait([task])

    async def _supersede(self, requester_id: int) -> None:
        prior = self._active.pop(requester_id, None)
        task = self._tasks.pop(requester_id, None)
        await self.table.invalidate_requester(requester_id)

        if task is not None and not task.done():
            logger.info(f"[ORCH] Cancelling running job for requester {requester_id}")
            task.cancel()
            await asyncio.wait([task])
        elif prior is not None and not prior.status.is_terminal:
            logger.info(f"[ORCH] Job {prior.job_id}: superseded while waiting for a choice")
            prior.finish(JobStatus.SUPERSEDED)
            prior.workspace.cleanup()
            await self._notify(prior, SUPERSEDED_MESSAGE)

    def _release(self, job: DownloadJob) -> None:
        if self._active.get(job.requester_id) is job:
            del self._active[job.requester_id]
        task = self._tasks.get(job.requester_id)
        if task is not None and task is asyncio.current_task():
            del self._tasks[job.requester_id]

    async def _guard(self, job: DownloadJob, work: Callable[[], Awaitable[None]]) -> None:
        """
        Run one stage of a job and settle it.

        A job left in NEGOTIATING is parked on a choice token and keeps its
        resources; any other outcome is terminal and releases them.
        """
        try:
            await work()
        except asyncio.CancelledError:
            job.finish(JobStatus.SUPERSEDED)
            await self.table.invalidate_job(job)
            await self._notify(job, SUPERSEDED_MESSAGE)
            raise
        except MediaError as e:
            self._log_failure(job, e)
            job.finish(JobStatus.FAILED)
            await self.table.invalidate_job(job)
            await self._notify(job, failure_message(e, job.display_name, self.fetcher.max_size))
        except Exception as e:
            logger.error(
                f"[ORCH] ✗ Job {job.job_id} crashed: platform={job.platform.value} url={job.source_url} "
                f"requester={job.requester_id} cause={type(e).__name__}: {e}",
                exc_info=True,
            )
            job.finish(JobStatus.FAILED)
            await self.table.invalidate_job(job)
            await self._notify(job, GENERIC_FAILURE_MESSAGE)
        finally:
            if job.status != JobStatus.NEGOTIATING:
                if not job.status.is_terminal:
                    job.finish(JobStatus.FAILED)
                job.workspace.cleanup()
                self._release(job)

    def _log_failure(self, job: DownloadJob, error: MediaError) -> None:
        cause = error.cause or error
        logger.error(
            f"[ORCH] ✗ Job {job.job_id} failed ({error.kind}, retryable={error.retryable}): "
            f"platform={job.platform.value} url={job.source_url} requester={job.requester_id} "
            f"cause={type(cause).__name__}: {cause}"
        )

    async def _notify(self, job: DownloadJob, text: str) -> None:
        """Terminal message: replaces the status message when there is one."""
        try:
            if job.status_ref is not None:
                await self.channel.edit_status(job.status_ref, text)
            else:
                await self.channel.send_text(job.chat_id, text)
        except Exception as e:
            logger.error(f"[ORCH] Could not notify chat {job.chat_id}: {type(e).__name__}: {e}")

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _acquire(self, job: DownloadJob) -> None:
        job.status_ref = await self.channel.send_text(
            job.chat_id, f"Processing your {job.display_name} video download request..."
        )

        try:
            result = await asyncio.wait_for(
                self.router.extract(job.platform, job.source_url), timeout=self.pipeline_timeout
            )
        except asyncio.TimeoutError as e:
            raise PipelineTimeout("extraction timed out", cause=e) from e

        job.title = result.title

        if job.platform == Platform.YOUTUBE:
            prompt = await self.negotiator.begin(job, result.renditions)
            await self._present(job, prompt)
            return

        job.selected_rendition = result.as_rendition()
        await self._execute(job)

    async def _after_choice(self, choice: PendingChoice, index: int) -> None:
        job = choice.job
        step = await self.negotiator.advance(choice, index)
        if isinstance(step, ChoicePrompt):
            await self._present(job, step)
            return
        await self._execute(job)

    async def _present(self, job: DownloadJob, prompt: ChoicePrompt) -> None:
        for old in prompt.superseded:
            if old.job is not job and not old.job.status.is_terminal:
                old.job.finish(JobStatus.SUPERSEDED)
                await self._notify(old.job, SUPERSEDED_MESSAGE)
        if job.status_ref is not None and prompt.options == TYPE_OPTIONS:
            await self.channel.edit_status(job.status_ref, f"🔎 Found: {job.title or job.display_name + ' video'}")
        job.status_ref = await self.channel.present_choices(job.chat_id, prompt.token, prompt.text, prompt.options)

    async def _execute(self, job: DownloadJob, caption: Optional[str] = None) -> None:
        try:
            await asyncio.wait_for(self._fetch_merge_deliver(job, caption), timeout=self.pipeline_timeout)
        except asyncio.TimeoutError as e:
            raise PipelineTimeout("pipeline timed out", cause=e) from e

    async def _fetch_merge_deliver(self, job: DownloadJob, caption: Optional[str]) -> None:
        selected = job.selected_rendition
        workspace = job.workspace
        base_name = safe_filename(job.title, fallback=job.display_name.lower())
        tracker = ProgressTracker(self._progress_callback(job), interval=self.progress_interval)

        self._check_declared_size(job)
        job.status = JobStatus.FETCHING
        await self._status(job, "Starting download... 0%")

        if job.needs_merge:
            audio = job.audio_rendition
            video_path = workspace.allocate(f"_video_stream.{selected.container}")
            audio_path = workspace.allocate(f"_audio_stream.{audio.container}")
            await self.fetcher.fetch_all([(selected, video_path), (audio, audio_path)], tracker)

            job.status = JobStatus.MERGING
            await self._status(job, "Merging audio and video...")
            final_path = workspace.allocate(f"{base_name}.mp4")
            await self.merger.merge(video_path, audio_path, final_path)
        else:
            final_path = workspace.allocate(f"{base_name}.{selected.container}")
            await self.fetcher.fetch_all([(selected, final_path)], tracker)

        self._check_file_size(final_path)

        job.status = JobStatus.DELIVERING
        await self._status(job, "Download complete! Uploading to Telegram...")
        await self.delivery.deliver(
            job.chat_id,
            final_path,
            self._caption(job, caption),
            audio_only=selected.is_audio_only,
        )

        # temp files go only after the upload succeeded
        job.finish(JobStatus.COMPLETED)
        if self.store is not None and job.platform != Platform.UNKNOWN:
            await asyncio.to_thread(self.store.append_download_record, job.requester_id, job.source_url)
        logger.info(f"[ORCH] ✓ Job {job.job_id} completed")
        await self._notify(job, "✅ Successfully uploaded to Telegram!")

    def _check_declared_size(self, job: DownloadJob) -> None:
        max_size = self.fetcher.max_size
        if not max_size:
            return
        declared = sum(
            r.filesize or 0 for r in (job.selected_rendition, job.audio_rendition) if r is not None
        )
        if declared > max_size:
            raise MediaTooLarge(f"declared size {declared} exceeds {max_size}")

    def _check_file_size(self, path: Path) -> None:
        max_size = self.fetcher.max_size
        if max_size and path.stat().st_size > max_size:
            raise MediaTooLarge(f"{path.name} is {path.stat().st_size} bytes")

    def _caption(self, job: DownloadJob, caption: Optional[str]) -> str:
        if caption is None:
            requester = f"@{job.requester_name}" if job.requester_name else str(job.requester_id)
            caption = f"{job.title or job.display_name + ' video'}\n\nRequested by: {requester}"
        return caption[:CAPTION_LIMIT]

    async def _status(self, job: DownloadJob, text: str) -> None:
        if job.status_ref is None:
            job.status_ref = await self.channel.send_text(job.chat_id, text)
        else:
            await self.channel.edit_status(job.status_ref, text)

    def _progress_callback(self, job: DownloadJob) -> Callable[[Optional[float], int], None]:
        """Progress arrives on worker threads; hop back onto the loop to edit the status."""
        loop = asyncio.get_running_loop()

        def on_progress(percent: Optional[float], downloaded: int) -> None:
            if percent is not None:
                text = f"Downloading: {percent:.1f}%"
            else:
                text = f"Downloading: {downloaded / (1024 * 1024):.1f}MB"
            loop.call_soon_threadsafe(self._spawn_status_edit, job, text)

        return on_progress

    def _spawn_status_edit(self, job: DownloadJob, text: str) -> None:
        task = asyncio.ensure_future(self._progress_edit(job, text))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _progress_edit(self, job: DownloadJob, text: str) -> None:
        # a late report must not overwrite a later stage
        if job.status_ref is None or job.status != JobStatus.FETCHING:
            return
        await self.channel.edit_status(job.status_ref, text)
