"""
Tests for the ffmpeg merger.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from video_pipeline.errors import MergeFailed
from video_pipeline.merger import Merger


def fake_process(returncode=0, stderr=b"", output=None, hang=False):
    proc = MagicMock()
    proc.returncode = None

    async def communicate():
        if hang:
            await asyncio.sleep(10)
        if output is not None:
            output.write_bytes(b"merged")
        proc.returncode = returncode
        return b"", stderr

    async def wait():
        proc.returncode = -9
        return -9

    proc.communicate = communicate
    proc.wait = wait
    proc.kill = MagicMock()
    return proc


@pytest.fixture
def inputs(tmp_path):
    video = tmp_path / "v.mp4"
    audio = tmp_path / "a.webm"
    video.write_bytes(b"video")
    audio.write_bytes(b"audio")
    return video, audio, tmp_path / "out.mp4"


class TestBuildCommand:

    def test_maps_video_and_audio_streams(self, inputs):
        video, audio, out = inputs
        cmd = Merger(ffmpeg_bin="/usr/bin/ffmpeg", audio_bitrate="192k", preset="fast").build_command(video, audio, out)

        assert cmd[0] == "/usr/bin/ffmpeg"
        assert cmd[cmd.index("-i") + 1] == str(video)
        assert str(audio) in cmd
        assert ["-map", "0:v:0"] == cmd[cmd.index("-map"):cmd.index("-map") + 2]
        assert "1:a:0" in cmd
        assert cmd[cmd.index("-b:a") + 1] == "192k"
        assert cmd[cmd.index("-preset") + 1] == "fast"
        assert cmd[-1] == str(out)


class TestMerge:

    @pytest.mark.asyncio
    async def test_success(self, inputs):
        video, audio, out = inputs
        proc = fake_process(output=out)
        with patch("video_pipeline.merger.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            result = await Merger().merge(video, audio, out)

        assert result == out
        assert out.read_bytes() == b"merged"

    @pytest.mark.asyncio
    async def test_nonzero_exit_removes_output(self, inputs):
        video, audio, out = inputs
        proc = fake_process(returncode=1, stderr=b"Invalid data found", output=out)
        with patch("video_pipeline.merger.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(MergeFailed):
                await Merger().merge(video, audio, out)

        assert not out.exists()

    @pytest.mark.asyncio
    async def test_empty_output(self, inputs):
        video, audio, out = inputs
        with patch("video_pipeline.merger.asyncio.create_subprocess_exec", AsyncMock(return_value=fake_process())):
            with pytest.raises(MergeFailed):
                await Merger().merge(video, audio, out)

    @pytest.mark.asyncio
    async def test_missing_binary(self, inputs):
        video, audio, out = inputs
        with patch("video_pipeline.merger.asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("ffmpeg"))):
            with pytest.raises(MergeFailed):
                await Merger().merge(video, audio, out)

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, inputs):
        video, audio, out = inputs
        proc = fake_process(hang=True)
        with patch("video_pipeline.merger.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(MergeFailed):
                await Merger(timeout=0.05).merge(video, audio, out)

        proc.kill.assert_called_once()
        assert not out.exists()
