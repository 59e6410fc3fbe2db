"""
Delivery planner: decides how each resolved item reaches the chat.

Order of preference per item:
1. the smallest variant that already fits the attachment limit
   (clean copies win over watermarked ones of any size);
2. a video variant small enough to download is compressed to fit;
3. a direct link, or a failure when the policy says so.

A slideshow (one soundtrack plus pictures) whose parts were all attached is
then rendered into one video when that is enabled.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence

import aiohttp

from .config import DeliveryTiers, get_delivery_tiers, get_http_timeout
from .errors import NetworkError, ReelfitError, TranscodeError, UnavailableError
from .models import MediaItem, MediaKind, Variant
from .transcode import compose_slideshow, compress_to_budget


logger = logging.getLogger(__name__)

Compressor = Callable[[bytes, int, Optional[str]], Awaitable[bytes]]
SlideshowComposer = Callable[[List[bytes], bytes, Optional[str]], Awaitable[bytes]]

DEFAULT_EXTENSIONS = {
    MediaKind.VIDEO: "mp4",
    MediaKind.IMAGE: "jpg",
    MediaKind.AUDIO: "mp3",
}


@dataclass
class DeliveryResult:
    mode: str  # 'attach' | 'link' | 'fail'
    kind: MediaKind
    data: Optional[bytes] = None
    href: Optional[str] = None
    ext: Optional[str] = None
    size: Optional[int] = None
    compressed: bool = False
    reason: Optional[str] = None  # i18n key explaining a link or a failure
    error: Optional[ReelfitError] = None

    @property
    def filename(self) -> str:
        return f"{self.kind.value}.{self.ext or DEFAULT_EXTENSIONS[self.kind]}"


def pick_attachable(item: MediaItem, attach_limit: int) -> Optional[Variant]:
    fitting = [v for v in item.variants if v.content_length is not None and v.content_length <= attach_limit]
    if not fitting:
        return None
    clean = [v for v in fitting if not v.watermarked]
    return min(clean or fitting, key=lambda v: v.content_length or 0)


def pick_compression_source(item: MediaItem, source_limit: int) -> Optional[Variant]:
    if item.kind is not MediaKind.VIDEO:
        return None
    # variants are already ordered by preference
    for variant in item.variants:
        if variant.content_length is not None and variant.content_length <= source_limit:
            return variant
    return None


async def download_bytes(session: aiohttp.ClientSession, url: str, limit: int) -> bytes:
    """Fetch ``url`` into memory, refusing bodies larger than ``limit``."""
    chunks: List[bytes] = []
    total = 0
    try:
        async with session.get(url, allow_redirects=True) as resp:
            if not (200 <= resp.status < 300):
                raise UnavailableError(f"GET {url} answered {resp.status}", url=url)
            async for chunk in resp.content.iter_chunked(64 * 1024):
                total += len(chunk)
                if total > limit:
                    raise UnavailableError(f"{url} is larger than {limit} bytes", url=url)
                chunks.append(chunk)
    except (aiohttp.ClientError, asyncio.TimeoutError) as err:
        raise UnavailableError(f"download of {url} failed", url=url) from NetworkError(str(err), backend="delivery")
    return b"".join(chunks)


def _fallback(item: MediaItem, tiers: DeliveryTiers, reason: str, error: Optional[ReelfitError] = None) -> DeliveryResult:
    best = item.best
    if tiers.on_compress_failure == "fail":
        return DeliveryResult(mode="fail", kind=item.kind, size=best.content_length, reason=reason, error=error)
    return DeliveryResult(
        mode="link",
        kind=item.kind,
        href=best.href,
        ext=best.mime_extension,
        size=best.content_length,
        reason=reason,
        error=error,
    )


async def plan_item(
    item: MediaItem,
    session: aiohttp.ClientSession,
    tiers: DeliveryTiers,
    *,
    compress: Compressor = compress_to_budget,
) -> DeliveryResult:
    variant = pick_attachable(item, tiers.attach_limit)
    if variant is not None:
        try:
            data = await download_bytes(session, variant.href, tiers.attach_limit)
        except UnavailableError as err:
            logger.warning("attachment download failed for %s: %s", variant.href, err)
            return _fallback(item, tiers, "error_download", err)
        return DeliveryResult(
            mode="attach",
            kind=item.kind,
            data=data,
            href=variant.href,
            ext=variant.mime_extension,
            size=len(data),
        )

    if not tiers.compression_enabled:
        return _fallback(item, tiers, "too_large")

    source = pick_compression_source(item, tiers.compress_source_limit)
    if source is None:
        logger.info(
            "%s item too large to attach or compress (%s bytes)",
            item.kind.value,
            item.best.content_length,
        )
        return _fallback(item, tiers, "too_large")

    logger.info("compressing %s (%s bytes) to %d bytes", source.href, source.content_length, tiers.attach_limit)
    try:
        data = await download_bytes(session, source.href, tiers.compress_source_limit)
        compressed = await compress(data, tiers.attach_limit, tiers.codec)
    except (TranscodeError, UnavailableError) as err:
        logger.warning("compression failed for %s: %s: %s", source.href, type(err).__name__, err)
        return _fallback(item, tiers, "compression_failed", err)
    return DeliveryResult(
        mode="attach",
        kind=item.kind,
        data=compressed,
        href=source.href,
        ext="mp4",
        size=len(compressed),
        compressed=True,
    )


def is_slideshow(kinds: Sequence[MediaKind]) -> bool:
    """Exactly one soundtrack and at least one picture, nothing else."""
    audio = sum(1 for k in kinds if k is MediaKind.AUDIO)
    images = sum(1 for k in kinds if k is MediaKind.IMAGE)
    return audio == 1 and images >= 1 and audio + images == len(kinds)


async def merge_slideshow(
    results: List[DeliveryResult],
    tiers: DeliveryTiers,
    *,
    compose: SlideshowComposer = compose_slideshow,
) -> List[DeliveryResult]:
    """Replace an attached slideshow with one rendered video; keep the parts when that fails."""
    if not tiers.slideshow_video or not is_slideshow([r.kind for r in results]):
        return results
    if any(r.mode != "attach" or r.data is None for r in results):
        return results
    audio = next(r for r in results if r.kind is MediaKind.AUDIO)
    images = [r.data for r in results if r.kind is MediaKind.IMAGE]
    try:
        video = await compose(images, audio.data, tiers.codec)
    except TranscodeError as err:
        logger.warning("slideshow video failed, sending pictures instead: %s: %s", type(err).__name__, err)
        return results
    if len(video) > tiers.attach_limit:
        logger.warning("slideshow video is %d bytes, over the %d byte limit", len(video), tiers.attach_limit)
        return results
    return [DeliveryResult(mode="attach", kind=MediaKind.VIDEO, data=video, ext="mp4", size=len(video))]


async def deliver(
    items: Sequence[MediaItem],
    tiers: Optional[DeliveryTiers] = None,
    *,
    compress: Compressor = compress_to_budget,
    compose: SlideshowComposer = compose_slideshow,
) -> List[DeliveryResult]:
    """Plan every item of one resolution in order."""
    tiers = tiers or get_delivery_tiers()
    timeout = aiohttp.ClientTimeout(total=None, sock_read=get_http_timeout())
    results: List[DeliveryResult] = []
    async with aiohttp.ClientSession(timeout=timeout) as session:
        for item in items:
            results.append(await plan_item(item, session, tiers, compress=compress))
    return await merge_slideshow(results, tiers, compose=compose)
