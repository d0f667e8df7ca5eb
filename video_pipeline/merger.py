"""
Audio + video merge through an external ffmpeg process.

The target profile is fixed (H.264 / AAC, speed-oriented preset): the goal
is a file every chat client can play, not a faithful re-encode.
"""

import asyncio
import logging
from pathlib import Path

from video_pipeline.errors import MergeFailed

logger = logging.getLogger(__name__)


class Merger:
    def __init__(
        self,
        ffmpeg_bin: str = "ffmpeg",
        audio_bitrate: str = "128k",
        preset: str = "veryfast",
        timeout: float = 300.0,
    ):
        self.ffmpeg_bin = ffmpeg_bin
        self.audio_bitrate = audio_bitrate
        self.preset = preset
        self.timeout = timeout

    def build_command(self, video_path: Path, audio_path: Path, output_path: Path) -> list[str]:
        return [
            self.ffmpeg_bin,
            "-hide_banner",
            "-loglevel", "error",
            "-y",
            "-i", str(video_path),
            "-i", str(audio_path),
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-c:v", "libx264",
            "-preset", self.preset,
            "-pix_fmt", "yuv420p",
            "-c:a", "aac",
            "-b:a", self.audio_bitrate,
            "-movflags", "+faststart",
            "-shortest",
            str(output_path),
        ]

    async def merge(self, video_path: Path, audio_path: Path, output_path: Path) -> Path:
        """
        Combine a video-only and an audio-only file into `output_path`.

        Raises:
            MergeFailed: ffmpeg missing, non-zero exit, timeout, or empty
                output. Any partial output is removed first.
        """
        cmd = self.build_command(video_path, audio_path, output_path)
        logger.info(f"[MERGE] Merging {video_path.name} + {audio_path.name} -> {output_path.name}")
        logger.debug(f"[MERGE] Command: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"[MERGE] ✗ Could not start {self.ffmpeg_bin}: {e}")
            raise MergeFailed(f"could not start {self.ffmpeg_bin}", cause=e) from e

        try:
            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                logger.error(f"[MERGE] ✗ ffmpeg timed out after {self.timeout:.0f}s")
                raise MergeFailed(f"ffmpeg timed out after {self.timeout:.0f}s", cause=e) from e

            if proc.returncode != 0:
                error_msg = stderr.decode(errors='replace').strip()[-500:] if stderr else "Unknown ffmpeg error"
                logger.error(f"[MERGE] ✗ ffmpeg exited with {proc.returncode}: {error_msg}")
                raise MergeFailed(f"ffmpeg exited with {proc.returncode}")

            if not output_path.exists() or output_path.stat().st_size == 0:
                logger.error(f"[MERGE] ✗ ffmpeg produced no output")
                raise MergeFailed("ffmpeg produced no output")

        except BaseException:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            output_path.unlink(missing_ok=True)
            raise

        logger.info(f"[MERGE] ✓ Merged file ready ({output_path.stat().st_size / (1024*1024):.2f}MB)")
        return output_path
