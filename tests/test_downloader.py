"""
Tests for the fetcher: streaming, size limits, progress and partial-file cleanup.
"""
import asyncio
import time
from threading import Event
from unittest.mock import MagicMock, patch

import pytest
import requests

from video_pipeline.downloader import Fetcher, ProgressTracker, stream_to_file
from video_pipeline.errors import FetchFailed, MediaTooLarge, NoDownloadableMedia, TransientError

from conftest import make_rendition


def fake_response(status=200, chunks=(b"abc", b"def"), content_length=None, broken_after=None):
    response = MagicMock()
    response.status_code = status
    response.headers = {"content-length": str(content_length)} if content_length is not None else {}

    def iter_content(chunk_size):
        for i, chunk in enumerate(chunks):
            if broken_after is not None and i == broken_after:
                raise requests.ConnectionError("connection reset")
            yield chunk

    response.iter_content.side_effect = iter_content
    return response


class TestStreamToFile:

    def test_writes_file_and_reports_progress(self, tmp_path):
        dest = tmp_path / "out.mp4"
        updates = []
        with patch("video_pipeline.downloader.requests.get", return_value=fake_response(content_length=6)) as get:
            written = stream_to_file("https://cdn.test/v", dest, on_progress=lambda d, t: updates.append((d, t)))

        assert written == 6
        assert dest.read_bytes() == b"abcdef"
        assert updates == [(3, 6), (6, 6)]
        assert get.call_args.kwargs["stream"] is True

    @pytest.mark.parametrize("status,error", [
        (403, NoDownloadableMedia),
        (404, NoDownloadableMedia),
        (429, TransientError),
        (503, TransientError),
    ])
    def test_status_codes(self, tmp_path, status, error):
        dest = tmp_path / "out.mp4"
        with patch("video_pipeline.downloader.requests.get", return_value=fake_response(status=status)):
            with pytest.raises(error):
                stream_to_file("https://cdn.test/v", dest)
        assert not dest.exists()

    def test_declared_size_over_limit(self, tmp_path):
        dest = tmp_path / "out.mp4"
        with patch("video_pipeline.downloader.requests.get", return_value=fake_response(content_length=10_000)):
            with pytest.raises(MediaTooLarge):
                stream_to_file("https://cdn.test/v", dest, max_size=100)
        assert not dest.exists()

    def test_streamed_size_over_limit_removes_partial(self, tmp_path):
        dest = tmp_path / "out.mp4"
        response = fake_response(chunks=(b"x" * 60, b"x" * 60))
        with patch("video_pipeline.downloader.requests.get", return_value=response):
            with pytest.raises(MediaTooLarge):
                stream_to_file("https://cdn.test/v", dest, max_size=100)
        assert not dest.exists()
        response.close.assert_called_once()

    def test_interrupted_stream_is_transient(self, tmp_path):
        dest = tmp_path / "out.mp4"
        with patch("video_pipeline.downloader.requests.get", return_value=fake_response(broken_after=1)):
            with pytest.raises(TransientError):
                stream_to_file("https://cdn.test/v", dest)
        assert not dest.exists()

    def test_connection_failure_is_transient(self, tmp_path):
        with patch("video_pipeline.downloader.requests.get", side_effect=requests.Timeout("slow")):
            with pytest.raises(TransientError):
                stream_to_file("https://cdn.test/v", tmp_path / "out.mp4")

    def test_unwritable_destination(self, tmp_path):
        dest = tmp_path / "missing-dir" / "out.mp4"
        with patch("video_pipeline.downloader.requests.get", return_value=fake_response()):
            with pytest.raises(FetchFailed):
                stream_to_file("https://cdn.test/v", dest)

    def test_cancel_event_stops_stream(self, tmp_path):
        dest = tmp_path / "out.mp4"
        cancelled = Event()
        cancelled.set()
        with patch("video_pipeline.downloader.requests.get", return_value=fake_response()):
            with pytest.raises(TransientError):
                stream_to_file("https://cdn.test/v", dest, cancelled=cancelled)
        assert not dest.exists()


class TestProgressTracker:

    def test_throttles_reports(self):
        now = [0.0]
        reports = []
        tracker = ProgressTracker(lambda p, d: reports.append((p, d)), interval=2.0, clock=lambda: now[0])
        update = tracker.stream("video")

        update(10, 100)
        now[0] = 1.0
        update(20, 100)
        now[0] = 2.5
        update(30, 100)

        assert reports == [(30.0, 30)]

    def test_aggregates_streams(self):
        now = [10.0]
        reports = []
        tracker = ProgressTracker(lambda p, d: reports.append((p, d)), interval=0, clock=lambda: now[0])
        video = tracker.stream("video")
        audio = tracker.stream("audio")

        video(50, 100)
        audio(50, 100)

        assert reports[-1] == (50.0, 100)

    def test_unknown_total_reports_bytes_only(self):
        reports = []
        tracker = ProgressTracker(lambda p, d: reports.append((p, d)), interval=0)
        tracker.stream("video")(1024, None)
        assert reports == [(None, 1024)]

    def test_callback_errors_are_swallowed(self):
        def boom(percent, done):
            raise RuntimeError("chat unavailable")

        tracker = ProgressTracker(boom, interval=0)
        tracker.stream("video")(1, 2)


class TestFetcher:

    @pytest.mark.asyncio
    async def test_fetch_all_waits_for_every_stream(self, tmp_path):
        fetcher = Fetcher()
        items = [
            (make_rendition("https://cdn.test/v"), tmp_path / "v.mp4"),
            (make_rendition("https://cdn.test/a"), tmp_path / "a.m4a"),
        ]

        def fake_stream(url, destination, *args):
            destination.write_bytes(url.encode())
            return len(url)

        with patch("video_pipeline.downloader.stream_to_file", side_effect=fake_stream):
            paths = await fetcher.fetch_all(items)

        assert paths == [tmp_path / "v.mp4", tmp_path / "a.m4a"]
        assert all(p.exists() for p in paths)

    @pytest.mark.asyncio
    async def test_fetch_all_prefers_media_error(self, tmp_path):
        fetcher = Fetcher()
        items = [
            (make_rendition("https://cdn.test/v"), tmp_path / "v.mp4"),
            (make_rendition("https://cdn.test/a"), tmp_path / "a.m4a"),
        ]

        def fake_stream(url, destination, *args):
            if url.endswith("/v"):
                raise ValueError("unexpected")
            raise NoDownloadableMedia("gone")

        with patch("video_pipeline.downloader.stream_to_file", side_effect=fake_stream):
            with pytest.raises(NoDownloadableMedia):
                await fetcher.fetch_all(items)

    @pytest.mark.asyncio
    async def test_cancel_signals_worker(self, tmp_path):
        fetcher = Fetcher()
        seen = {}
        started = asyncio.Event()
        loop = asyncio.get_running_loop()

        def slow_stream(url, destination, headers, max_size, on_progress, cancelled):
            seen["event"] = cancelled
            loop.call_soon_threadsafe(started.set)
            cancelled.wait(5)
            return 0

        with patch("video_pipeline.downloader.stream_to_file", side_effect=slow_stream):
            task = asyncio.create_task(fetcher.fetch(make_rendition("https://cdn.test/v"), tmp_path / "v.mp4"))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert seen["event"].is_set()

    @pytest.mark.asyncio
    async def test_cancel_waits_for_worker_to_remove_its_file(self, tmp_path):
        fetcher = Fetcher()
        dest = tmp_path / "v.mp4"
        started = asyncio.Event()
        loop = asyncio.get_running_loop()

        def slow_stream(url, destination, headers, max_size, on_progress, cancelled):
            destination.write_bytes(b"partial")
            loop.call_soon_threadsafe(started.set)
            cancelled.wait(5)
            time.sleep(0.1)
            destination.unlink()
            raise TransientError("download cancelled")

        with patch("video_pipeline.downloader.stream_to_file", side_effect=slow_stream):
            task = asyncio.create_task(fetcher.fetch(make_rendition("https://cdn.test/v"), dest))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert not dest.exists()

    @pytest.mark.asyncio
    async def test_cancel_grace_is_bounded(self, tmp_path):
        fetcher = Fetcher(cancel_grace=0.05)
        started = asyncio.Event()
        release = Event()
        loop = asyncio.get_running_loop()

        def stuck_stream(url, destination, headers, max_size, on_progress, cancelled):
            loop.call_soon_threadsafe(started.set)
            release.wait(5)
            return 0

        with patch("video_pipeline.downloader.stream_to_file", side_effect=stuck_stream):
            task = asyncio.create_task(fetcher.fetch(make_rendition("https://cdn.test/v"), tmp_path / "v.mp4"))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await asyncio.wait_for(task, timeout=2)
            release.set()
