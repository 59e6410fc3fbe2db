"""
Transcode planner: squeezes a video under a byte budget.

The target video bitrate is derived from the probed duration and audio
bitrate, audio is copied as-is, and the result is probed again to confirm it
actually fits.

Slideshow posts (pictures plus one soundtrack) are rendered into a single
video here as well; both jobs share the process-wide compression lock.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import shutil
import tempfile
import uuid
from functools import partial
from typing import Awaitable, Callable, Optional, Protocol, Sequence, Tuple

import aiofiles

from .compression_lock import COMPRESSION_LOCK, CompressionLock
from .config import get_codec, get_encoder_floor_bps, get_muxing_margin, get_safety_margin
from .errors import BudgetUnreachableError, CompressionFailedError, ProbeError
from .ffmpeg import FFmpegTool, ProbeResult
from .models import TranscodeJob


logger = logging.getLogger(__name__)

BITS_IN_MB = 8 * 1024 * 1024

MAX_SLIDESHOW_HEIGHT = 1920
MIN_SLIDESHOW_RATIO = 9 / 16
MAX_SLIDESHOW_RATIO = 3.0

_RUNNING: set[asyncio.Task] = set()


class MediaTool(Protocol):
    async def probe(self, path: str) -> ProbeResult: ...

    async def encode(self, path: str, target_video_bitrate: int, codec: Optional[str], output_path: str) -> str: ...


class SlideshowTool(Protocol):
    async def image_size(self, path: str) -> Tuple[int, int]: ...

    async def render_slideshow(
        self,
        image_paths: Sequence[str],
        audio_path: str,
        width: int,
        height: int,
        codec: Optional[str],
        output_path: str,
    ) -> str: ...


async def _write_file(path: str, data: bytes) -> None:
    async with aiofiles.open(path, "wb") as fh:
        await fh.write(data)


async def _read_file(path: str) -> bytes:
    async with aiofiles.open(path, "rb") as fh:
        return await fh.read()


def compute_target_bitrate(
    byte_budget: int,
    duration_seconds: float,
    audio_bitrate: int,
    *,
    muxing_margin: float = 0.96,
    safety_margin: float = 0.90,
) -> int:
    """
    Video bitrate (b/s) that should land the file under ``byte_budget``.

    ``muxing_margin`` reserves room for container overhead, ``safety_margin``
    for encoders that overshoot the requested bitrate.
    """
    if byte_budget <= 0:
        raise ValueError("byte_budget must be positive")
    if duration_seconds <= 0:
        raise ValueError("duration_seconds must be positive")
    available_bits_per_second = byte_budget * 8 * muxing_margin / duration_seconds
    return math.floor((available_bits_per_second - max(0, audio_bitrate)) * safety_margin)


def _log_telemetry(job: TranscodeJob) -> None:
    def mb(bitrate: int) -> float:
        return bitrate * job.duration_seconds / BITS_IN_MB

    cbr_error = job.cbr_error_percent
    logger.info(
        "compression done: duration=%.2fs input=%.2fMB output=%.2fMB budget=%.2fMB codec=%s",
        job.duration_seconds,
        job.input_bytes / (1024 * 1024),
        (job.output_bytes or 0) / (1024 * 1024),
        job.byte_budget / (1024 * 1024),
        job.codec or "default",
    )
    logger.info(
        "source video bitrate=%d (%.2fMB) audio bitrate=%d (%.2fMB) target=%d output video bitrate=%s cbr error=%s",
        job.source_video_bitrate,
        mb(job.source_video_bitrate),
        job.source_audio_bitrate,
        mb(job.source_audio_bitrate),
        job.target_video_bitrate,
        job.output_video_bitrate,
        f"{cbr_error:.2f}%" if cbr_error is not None else "?",
    )


async def plan_and_compress(
    data: bytes,
    byte_budget: int,
    codec: Optional[str] = None,
    *,
    tool: Optional[MediaTool] = None,
    muxing_margin: Optional[float] = None,
    safety_margin: Optional[float] = None,
    encoder_floor: Optional[int] = None,
    workdir: Optional[str] = None,
) -> bytes:
    """
    One compression attempt. Does not take the compression lock itself,
    callers go through ``compress_to_budget``.
    """
    tool = tool or FFmpegTool()
    muxing_margin = get_muxing_margin() if muxing_margin is None else muxing_margin
    safety_margin = get_safety_margin() if safety_margin is None else safety_margin
    encoder_floor = get_encoder_floor_bps() if encoder_floor is None else encoder_floor

    job = TranscodeJob(input_bytes=len(data), byte_budget=byte_budget, codec=codec)
    temp_dir = tempfile.mkdtemp(prefix="reelfit_", dir=workdir)
    source_path = os.path.join(temp_dir, "source.mp4")
    output_path = os.path.join(temp_dir, "compressed.mp4")
    try:
        await _write_file(source_path, data)

        source = await tool.probe(source_path)
        if source.duration_seconds <= 0:
            raise ProbeError(f"non-positive duration {source.duration_seconds} for {source_path}")
        job.duration_seconds = source.duration_seconds
        job.source_video_bitrate = source.video_bitrate
        job.source_audio_bitrate = source.audio_bitrate
        job.target_video_bitrate = compute_target_bitrate(
            byte_budget,
            source.duration_seconds,
            source.audio_bitrate,
            muxing_margin=muxing_margin,
            safety_margin=safety_margin,
        )
        if job.target_video_bitrate < encoder_floor:
            logger.warning(
                "budget %d bytes unreachable for %.1fs video: target %d b/s under floor %d b/s",
                byte_budget,
                job.duration_seconds,
                job.target_video_bitrate,
                encoder_floor,
            )
            raise BudgetUnreachableError(job.target_video_bitrate, encoder_floor)

        await tool.encode(source_path, job.target_video_bitrate, codec, output_path)

        result = await tool.probe(output_path)
        job.output_video_bitrate = result.video_bitrate
        job.output_bytes = os.path.getsize(output_path)
        _log_telemetry(job)
        if job.output_bytes > byte_budget:
            raise CompressionFailedError(job.output_bytes, byte_budget)

        return await _read_file(output_path)
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def slideshow_frame(sizes: Sequence[Tuple[int, int]]) -> Tuple[int, int]:
    """
    Frame every slide is letterboxed into: the tallest picture's height
    (capped at 1920) at the narrowest aspect ratio among the pictures, but
    never narrower than 9:16. Both sides are rounded down to even numbers.
    """
    if not sizes:
        raise ValueError("slideshow needs at least one picture")
    height = min(max(h for _, h in sizes), MAX_SLIDESHOW_HEIGHT)
    ratio = max(MIN_SLIDESHOW_RATIO, min([MAX_SLIDESHOW_RATIO] + [w / h for w, h in sizes]))
    width = math.floor(height * ratio)
    # yuv420p needs even dimensions
    return max(2, width - width % 2), max(2, height - height % 2)


def _image_extension(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        return "png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return "jpg"


async def plan_slideshow(
    images: Sequence[bytes],
    audio: bytes,
    codec: Optional[str] = None,
    *,
    tool: Optional[SlideshowTool] = None,
    workdir: Optional[str] = None,
) -> bytes:
    """Render pictures plus a soundtrack into one mp4 without taking the lock."""
    if not images:
        raise ValueError("slideshow needs at least one picture")
    tool = tool or FFmpegTool()
    temp_dir = tempfile.mkdtemp(prefix="reelfit_slides_", dir=workdir)
    try:
        image_paths = []
        for index, image in enumerate(images):
            path = os.path.join(temp_dir, f"image{index}.{_image_extension(image)}")
            await _write_file(path, image)
            image_paths.append(path)
        audio_path = os.path.join(temp_dir, "audio.mp3")
        await _write_file(audio_path, audio)

        sizes = [await tool.image_size(path) for path in image_paths]
        width, height = slideshow_frame(sizes)
        output_path = os.path.join(temp_dir, "slideshow.mp4")
        await tool.render_slideshow(image_paths, audio_path, width, height, codec, output_path)

        result = await _read_file(output_path)
        logger.info(
            "slideshow done: pictures=%d frame=%dx%d codec=%s output=%.2fMB",
            len(images),
            width,
            height,
            codec or "default",
            len(result) / (1024 * 1024),
        )
        return result
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def _track_job(task: asyncio.Task) -> None:
    _RUNNING.add(task)

    def _cleanup(fut: asyncio.Task) -> None:
        _RUNNING.discard(fut)
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc:
            logger.warning("%s failed: %s: %s", fut.get_name(), type(exc).__name__, exc)

    task.add_done_callback(_cleanup)


async def _held(lock: CompressionLock, owner: str, job: Callable[[], Awaitable[bytes]]) -> bytes:
    async with lock.hold(owner):
        return await job()


async def _run_locked(lock: CompressionLock, kind: str, job: Callable[[], Awaitable[bytes]]) -> bytes:
    """
    Run ``job`` under ``lock`` in its own task.

    An in-flight job can't be cancelled: if the caller goes away the job
    still runs to completion and releases the lock.
    """
    owner = uuid.uuid4().hex[:8]
    task = asyncio.create_task(_held(lock, owner, job), name=f"{kind}:{owner}")
    _track_job(task)
    return await asyncio.shield(task)


async def compress_to_budget(
    data: bytes,
    byte_budget: int,
    codec: Optional[str] = None,
    *,
    tool: Optional[MediaTool] = None,
    lock: CompressionLock = COMPRESSION_LOCK,
) -> bytes:
    """Compress ``data`` under ``byte_budget`` while holding the process-wide lock."""
    codec = codec if codec is not None else get_codec()
    return await _run_locked(lock, "compress", partial(plan_and_compress, data, byte_budget, codec, tool=tool))


async def compose_slideshow(
    images: Sequence[bytes],
    audio: bytes,
    codec: Optional[str] = None,
    *,
    tool: Optional[SlideshowTool] = None,
    lock: CompressionLock = COMPRESSION_LOCK,
) -> bytes:
    """Render a slideshow video; shares the compression lock with ``compress_to_budget``."""
    codec = codec if codec is not None else get_codec()
    return await _run_locked(lock, "slideshow", partial(plan_slideshow, list(images), audio, codec, tool=tool))
