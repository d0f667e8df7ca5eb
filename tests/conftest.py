"""
Test fixtures and fakes for pytest
"""

import asyncio
from pathlib import Path

import pytest

from video_pipeline.choices import PendingChoiceTable
from video_pipeline.delivery import ChatChannel, StatusRef
from video_pipeline.downloader import Fetcher
from video_pipeline.errors import MediaError
from video_pipeline.merger import Merger
from video_pipeline.models import ExtractionResult, Platform, Rendition
from video_pipeline.negotiator import FormatNegotiator
from video_pipeline.orchestrator import SessionOrchestrator
from user_store import UserStore


class FakeChannel(ChatChannel):
    """Records everything the core sends to the chat."""

    def __init__(self):
        self.log = []
        self.files = []
        self.choices = []
        self._next_id = 0
        # edits to these chats wait until release_edits is set
        self.held_chats = set()
        self.edit_held = asyncio.Event()
        self.release_edits = asyncio.Event()

    def _ref(self, chat_id):
        self._next_id += 1
        return StatusRef(chat_id=chat_id, message_id=self._next_id)

    @property
    def texts(self):
        return [text for _, _, text in self.log]

    async def send_text(self, chat_id, text):
        self.log.append(("send", chat_id, text))
        return self._ref(chat_id)

    async def edit_status(self, ref, text):
        if ref.chat_id in self.held_chats:
            self.edit_held.set()
            await self.release_edits.wait()
        self.log.append(("edit", ref.chat_id, text))

    async def send_file(self, chat_id, path, caption, kind):
        # snapshot which temp files exist at upload time
        siblings = sorted(p.name for p in path.parent.iterdir())
        self.files.append({
            "chat_id": chat_id,
            "path": path,
            "caption": caption,
            "kind": kind,
            "content": path.read_bytes(),
            "siblings": siblings,
        })

    async def present_choices(self, chat_id, token, text, options):
        self.choices.append({"chat_id": chat_id, "token": token, "text": text, "options": options})
        self.log.append(("choices", chat_id, text))
        return self._ref(chat_id)


class FakeService:
    def __init__(self, platform):
        self.PLATFORM = platform
        self.SERVICE_NAME = platform.name
        self.priority = 50


class FakeRouter:
    """Router returning canned extraction results (or raising) per platform."""

    def __init__(self, results=None, delay=0.0):
        self.results = dict(results or {})
        self.delay = delay
        self.calls = []
        self.services = [FakeService(p) for p in self.results]

    def supports(self, platform):
        return platform in self.results

    def get_services(self):
        return [s.SERVICE_NAME for s in self.services]

    async def extract(self, platform, url):
        self.calls.append((platform, url))
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.results[platform]
        if isinstance(result, BaseException):
            raise result
        return result


class FakeFetcher(Fetcher):
    """Writes canned bytes instead of hitting the network."""

    def __init__(self, payloads=None, failures=None, blocking=(), max_size=None):
        super().__init__(max_size=max_size)
        self.payloads = dict(payloads or {})
        self.failures = dict(failures or {})
        self.blocking = set(blocking)
        self.started = asyncio.Event()
        self.gate = asyncio.Event()
        self.fetched = []

    async def fetch(self, rendition, destination, on_progress=None):
        url = rendition.source_url
        self.fetched.append(url)
        data = self.payloads.get(url, b"media:" + url.encode())
        destination.write_bytes(data[: len(data) // 2])
        self.started.set()
        if url in self.blocking:
            await self.gate.wait()
        if url in self.failures:
            raise self.failures[url]
        destination.write_bytes(data)
        if on_progress:
            on_progress(len(data), len(data))
        return destination


class FakeMerger(Merger):
    def __init__(self, error: MediaError = None):
        super().__init__()
        self.error = error
        self.calls = []

    async def merge(self, video_path, audio_path, output_path):
        self.calls.append((video_path, audio_path, output_path))
        assert video_path.exists() and audio_path.exists()
        if self.error:
            output_path.write_bytes(b"partial")
            output_path.unlink()
            raise self.error
        output_path.write_bytes(video_path.read_bytes() + b"+" + audio_path.read_bytes())
        return output_path


def make_rendition(url, container="mp4", label="", audio=False, video=False, bitrate=0.0, format_id="", filesize=None):
    return Rendition(
        source_url=url,
        container=container,
        quality_label=label,
        has_audio=audio,
        has_video=video,
        approx_bitrate=bitrate,
        format_id=format_id,
        filesize=filesize,
    )


@pytest.fixture
def youtube_renditions():
    return (
        make_rendition("https://cdn.test/v1080", "mp4", "1080p", video=True, bitrate=4000, format_id="137"),
        make_rendition("https://cdn.test/v720", "mp4", "720p", video=True, bitrate=2500, format_id="136"),
        make_rendition("https://cdn.test/v720a", "mp4", "720p", audio=True, video=True, bitrate=1500, format_id="22"),
        make_rendition("https://cdn.test/v360a", "mp4", "360p", audio=True, video=True, bitrate=600, format_id="18"),
        make_rendition("https://cdn.test/a64", "m4a", audio=True, bitrate=64, format_id="139"),
        make_rendition("https://cdn.test/a128", "m4a", audio=True, bitrate=128, format_id="140"),
        make_rendition("https://cdn.test/a160", "webm", audio=True, bitrate=160, format_id="251"),
    )


@pytest.fixture
def youtube_result(youtube_renditions):
    return ExtractionResult(
        platform=Platform.YOUTUBE,
        source_url="https://youtu.be/abc123",
        title="Test Video",
        renditions=youtube_renditions,
        provider_name="fake",
    )


@pytest.fixture
def tiktok_result():
    return ExtractionResult(
        platform=Platform.TIKTOK,
        source_url="https://www.tiktok.com/@user/video/123",
        title="TikTok clip",
        direct_url="https://cdn.test/tiktok.mp4",
        provider_name="fake",
    )


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def store():
    user_store = UserStore(":memory:")
    yield user_store
    user_store.close()


@pytest.fixture
def choice_table():
    return PendingChoiceTable(ttl=600)


@pytest.fixture
def make_orchestrator(tmp_path, channel, store):
    """Build an orchestrator around fakes; keyword overrides per test."""

    def _make(results, fetcher=None, merger=None, table=None, pipeline_timeout=30.0):
        return SessionOrchestrator(
            router=FakeRouter(results),
            negotiator=FormatNegotiator(table or PendingChoiceTable(ttl=600)),
            fetcher=fetcher or FakeFetcher(),
            merger=merger or FakeMerger(),
            channel=channel,
            store=store,
            download_dir=str(tmp_path / "work"),
            pipeline_timeout=pipeline_timeout,
            progress_interval=0.0,
        )

    return _make


def work_entries(tmp_path: Path) -> list:
    """Everything left in the orchestrator's temp root."""
    root = tmp_path / "work"
    if not root.exists():
        return []
    return sorted(str(p.relative_to(root)) for p in root.rglob("*"))
