import asyncio
import json
import logging
import math
import shutil
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .config import get_ffmpeg_bin, get_ffprobe_bin
from .errors import EncodeError, ProbeError


logger = logging.getLogger(__name__)

SLIDESHOW_FPS = 60
SLIDE_SECONDS = 2.5
TRANSITION_SECONDS = 0.5
DEFAULT_SLIDESHOW_CODEC = "libx264"


@dataclass
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str
    stderr: str


@dataclass
class ProbeResult:
    duration_seconds: float
    video_bitrate: int
    audio_bitrate: int


async def run_command(args: List[str]) -> CommandResult:
    """Run a child process and keep the exit code plus both output streams."""
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    out, err = await proc.communicate()
    return CommandResult(
        args=list(args),
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
    )


def _to_int(value) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _to_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_probe_output(text: str) -> ProbeResult:
    """Read ffprobe JSON; streams are picked by codec_type, not by position."""
    try:
        data = json.loads(text)
    except ValueError as err:
        raise ProbeError(f"ffprobe printed non-JSON output: {text[:200]!r}") from err
    if not isinstance(data, dict):
        raise ProbeError("ffprobe output is not an object")

    streams = data.get("streams") or []
    fmt = data.get("format") or {}
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
    if video is None:
        raise ProbeError("no video stream in probe output")

    duration = _to_float(video.get("duration")) or _to_float(fmt.get("duration"))
    if not duration or duration <= 0:
        raise ProbeError("probe output has no usable duration")

    audio_bitrate = (_to_int(audio.get("bit_rate")) or 0) if audio else 0
    video_bitrate = _to_int(video.get("bit_rate"))
    if video_bitrate is None:
        # some containers (webm, mkv) only report the overall bitrate
        total = _to_int(fmt.get("bit_rate"))
        if total is None:
            raise ProbeError("probe output has no video or container bitrate")
        video_bitrate = max(0, total - audio_bitrate)

    return ProbeResult(duration_seconds=duration, video_bitrate=video_bitrate, audio_bitrate=audio_bitrate)


def parse_image_size(text: str) -> Tuple[int, int]:
    """Width and height of the first picture stream in ffprobe JSON."""
    try:
        data = json.loads(text)
    except ValueError as err:
        raise ProbeError(f"ffprobe printed non-JSON output: {text[:200]!r}") from err
    streams = data.get("streams") if isinstance(data, dict) else None
    picture = next((s for s in streams or [] if s.get("codec_type") == "video"), None)
    if picture is None:
        raise ProbeError("no picture stream in probe output")
    width, height = _to_int(picture.get("width")), _to_int(picture.get("height"))
    if not width or not height or width <= 0 or height <= 0:
        raise ProbeError(f"picture has no usable size: {width}x{height}")
    return width, height


def slideshow_filter(count: int, width: int, height: int) -> Tuple[str, str]:
    """
    Filter graph for a looping slideshow of ``count`` still inputs.

    Every picture is letterboxed into ``width``x``height``. Slides are joined
    with a ``slideleft`` xfade, and the last transition goes back to the
    first picture so the clip can be looped under a longer soundtrack.
    Returns the graph and the label of its output.
    """
    if count < 1:
        raise ValueError("slideshow needs at least one picture")
    fit = (
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2:color=black,"
        f"setsar=1,format=yuv420p,fps={SLIDESHOW_FPS}"
    )
    if count == 1:
        return f"[0:v]{fit}[s0]", "s0"

    parts = [f"[0:v]{fit},split[s0][back]"]
    parts += [f"[{i}:v]{fit}[s{i}]" for i in range(1, count)]
    fade = f"xfade=transition=slideleft:duration={TRANSITION_SECONDS:.1f}"
    parts.append(f"[s0][s1]{fade}:offset={SLIDE_SECONDS:.1f}[m0]")
    current = 0
    second = 1
    for i in range(2, count + 1):
        second = second + 1 if second + 1 < count else 0
        source = f"s{second}" if second else "back"
        offset = (SLIDE_SECONDS + TRANSITION_SECONDS) * i - TRANSITION_SECONDS
        parts.append(f"[m{current}][{source}]{fade}:offset={offset:.1f}[m{current + 1}]")
        current += 1
    return ";".join(parts), f"m{current}"


def slideshow_frames(count: int) -> int:
    return math.ceil((SLIDE_SECONDS + TRANSITION_SECONDS) * count * SLIDESHOW_FPS)


class FFmpegTool:
    def __init__(self, ffmpeg: Optional[str] = None, ffprobe: Optional[str] = None):
        self.ffmpeg = ffmpeg or get_ffmpeg_bin()
        self.ffprobe = ffprobe or get_ffprobe_bin()

    async def _ffprobe(self, path: str, *extra: str) -> str:
        binary = shutil.which(self.ffprobe)
        if binary is None:
            raise ProbeError(f"{self.ffprobe} not found in PATH")
        args = [binary, "-v", "quiet", "-print_format", "json", "-show_streams", *extra, path]
        try:
            result = await run_command(args)
        except OSError as err:
            raise ProbeError(f"spawning {self.ffprobe} failed: {err}") from err
        if result.returncode != 0:
            logger.error("ffprobe exited with %s for %s: %s", result.returncode, path, result.stderr.strip()[-300:])
            raise ProbeError(f"ffprobe failed for {path}", exit_code=result.returncode, stderr=result.stderr)
        return result.stdout

    async def _ffmpeg(self, args: List[str], what: str) -> None:
        try:
            result = await run_command(args)
        except OSError as err:
            raise EncodeError(f"spawning {self.ffmpeg} failed: {err}") from err
        if result.returncode != 0:
            logger.critical("ffmpeg failed %s (exit %s). args: %s", what, result.returncode, " ".join(args))
            raise EncodeError(f"ffmpeg failed {what}", exit_code=result.returncode, stderr=result.stderr)

    def _ffmpeg_binary(self) -> str:
        binary = shutil.which(self.ffmpeg)
        if binary is None:
            raise EncodeError(f"{self.ffmpeg} not found in PATH")
        return binary

    async def probe(self, path: str) -> ProbeResult:
        return parse_probe_output(await self._ffprobe(path, "-show_format"))

    async def image_size(self, path: str) -> Tuple[int, int]:
        return parse_image_size(await self._ffprobe(path))

    def encode_args(self, binary: str, path: str, target_video_bitrate: int, codec: Optional[str], output_path: str) -> List[str]:
        args = [binary, "-hide_banner", "-y", "-i", path, "-c:a", "copy", "-b:v", str(target_video_bitrate)]
        if codec:
            args += ["-c:v", codec]
        args.append(output_path)
        return args

    async def encode(self, path: str, target_video_bitrate: int, codec: Optional[str], output_path: str) -> str:
        args = self.encode_args(self._ffmpeg_binary(), path, target_video_bitrate, codec, output_path)
        await self._ffmpeg(args, f"compressing {path}")
        return output_path

    def slideshow_loop_args(
        self,
        binary: str,
        image_paths: Sequence[str],
        width: int,
        height: int,
        codec: Optional[str],
        output_path: str,
    ) -> List[str]:
        args = [binary, "-hide_banner", "-y"]
        for path in image_paths:
            args += ["-loop", "1", "-framerate", str(SLIDESHOW_FPS), "-i", path]
        graph, label = slideshow_filter(len(image_paths), width, height)
        args += [
            "-filter_complex", graph,
            "-map", f"[{label}]",
            "-c:v", codec or DEFAULT_SLIDESHOW_CODEC,
            "-pix_fmt", "yuv420p",
            "-r", str(SLIDESHOW_FPS),
            "-frames:v", str(slideshow_frames(len(image_paths))),
            output_path,
        ]
        return args

    def slideshow_mux_args(self, binary: str, loop_path: str, audio_path: str, output_path: str) -> List[str]:
        # the loop repeats until the soundtrack ends
        return [
            binary, "-hide_banner", "-y",
            "-stream_loop", "-1", "-i", loop_path,
            "-i", audio_path,
            "-shortest",
            "-map", "0:v", "-map", "1:a",
            "-c:v", "copy", "-c:a", "aac",
            "-movflags", "+faststart",
            output_path,
        ]

    async def render_slideshow(
        self,
        image_paths: Sequence[str],
        audio_path: str,
        width: int,
        height: int,
        codec: Optional[str],
        output_path: str,
    ) -> str:
        binary = self._ffmpeg_binary()
        loop_path = f"{output_path}.loop.mp4"
        await self._ffmpeg(
            self.slideshow_loop_args(binary, image_paths, width, height, codec, loop_path),
            f"rendering a {len(image_paths)} picture slideshow",
        )
        await self._ffmpeg(self.slideshow_mux_args(binary, loop_path, audio_path, output_path), "adding slideshow audio")
        return output_path
