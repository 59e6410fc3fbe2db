from contextlib import asynccontextmanager

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from reelfit.config import DeliveryTiers
from reelfit.delivery import DeliveryResult, merge_slideshow, pick_attachable, pick_compression_source, plan_item
from reelfit.errors import CompressionFailedError, EncodeError
from reelfit.models import MediaItem, MediaKind, Variant


def _tiers(**overrides) -> DeliveryTiers:
    values = dict(
        attach_limit=1000,
        compress_source_limit=5000,
        compression_enabled=True,
        on_compress_failure="link",
        codec="libx264",
    )
    values.update(overrides)
    return DeliveryTiers(**values)


def test_smallest_clean_variant_wins_over_smaller_watermarked_one() -> None:
    item = MediaItem(
        MediaKind.VIDEO,
        (
            Variant(href="clean-big", content_length=900),
            Variant(href="clean-small", content_length=700),
            Variant(href="wm-tiny", content_length=100, watermarked=True),
            Variant(href="clean-huge", content_length=4000),
        ),
    )

    assert pick_attachable(item, 1000).href == "clean-small"


def test_watermarked_variant_used_when_no_clean_copy_fits() -> None:
    item = MediaItem(
        MediaKind.VIDEO,
        (Variant(href="clean", content_length=3000), Variant(href="wm", content_length=800, watermarked=True)),
    )

    assert pick_attachable(item, 1000).href == "wm"
    assert pick_attachable(item, 500) is None


def test_only_videos_are_compression_sources() -> None:
    video = MediaItem(MediaKind.VIDEO, (Variant(href="huge", content_length=9000), Variant(href="big", content_length=3000)))
    image = MediaItem(MediaKind.IMAGE, (Variant(href="img", content_length=3000),))

    assert pick_compression_source(video, 5000).href == "big"
    assert pick_compression_source(image, 5000) is None


async def _blob(request: web.Request) -> web.Response:
    size = int(request.match_info["size"])
    return web.Response(body=b"\x07" * size, content_type="video/mp4")


@asynccontextmanager
async def _serve():
    app = web.Application()
    app.router.add_get("/blob/{size}", _blob)
    server = TestServer(app)
    await server.start_server()
    try:
        async with aiohttp.ClientSession() as session:
            yield server, session
    finally:
        await server.close()


class _FakeCompressor:
    def __init__(self, result: bytes | None = None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple[int, int, str | None]] = []

    async def __call__(self, data: bytes, byte_budget: int, codec: str | None) -> bytes:
        self.calls.append((len(data), byte_budget, codec))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_fitting_variant_is_attached_without_compression() -> None:
    compressor = _FakeCompressor()
    async with _serve() as (server, session):
        item = MediaItem(MediaKind.VIDEO, (Variant(href=str(server.make_url("/blob/600")), content_length=600, mime_extension="mp4"),))
        result = await plan_item(item, session, _tiers(), compress=compressor)

    assert result.mode == "attach"
    assert result.size == 600
    assert result.filename == "video.mp4"
    assert result.compressed is False
    assert compressor.calls == []


@pytest.mark.asyncio
async def test_oversized_video_is_compressed_to_attach_limit() -> None:
    compressor = _FakeCompressor(result=b"\x01" * 950)
    async with _serve() as (server, session):
        item = MediaItem(MediaKind.VIDEO, (Variant(href=str(server.make_url("/blob/3000")), content_length=3000),))
        result = await plan_item(item, session, _tiers(), compress=compressor)

    assert result.mode == "attach"
    assert result.compressed is True
    assert result.size == 950
    assert compressor.calls == [(3000, 1000, "libx264")]


@pytest.mark.asyncio
async def test_failed_compression_falls_back_to_link() -> None:
    compressor = _FakeCompressor(error=CompressionFailedError(1200, 1000))
    async with _serve() as (server, session):
        href = str(server.make_url("/blob/3000"))
        item = MediaItem(MediaKind.VIDEO, (Variant(href=href, content_length=3000),))
        result = await plan_item(item, session, _tiers(), compress=compressor)

    assert result.mode == "link"
    assert result.href == href
    assert result.reason == "compression_failed"
    assert isinstance(result.error, CompressionFailedError)


@pytest.mark.asyncio
async def test_failed_compression_with_fail_policy() -> None:
    compressor = _FakeCompressor(error=CompressionFailedError(1200, 1000))
    async with _serve() as (server, session):
        item = MediaItem(MediaKind.VIDEO, (Variant(href=str(server.make_url("/blob/3000")), content_length=3000),))
        result = await plan_item(item, session, _tiers(on_compress_failure="fail"), compress=compressor)

    assert result.mode == "fail"
    assert result.reason == "compression_failed"
    assert result.href is None


@pytest.mark.asyncio
async def test_source_above_compression_limit_is_never_downloaded() -> None:
    compressor = _FakeCompressor(result=b"")
    item = MediaItem(MediaKind.VIDEO, (Variant(href="http://127.0.0.1:9/never", content_length=50_000),))

    async with aiohttp.ClientSession() as session:
        result = await plan_item(item, session, _tiers(), compress=compressor)

    assert result.mode == "link"
    assert result.reason == "too_large"
    assert result.size == 50_000
    assert compressor.calls == []


@pytest.mark.asyncio
async def test_large_image_goes_straight_to_link() -> None:
    compressor = _FakeCompressor(result=b"")
    item = MediaItem(MediaKind.IMAGE, (Variant(href="http://127.0.0.1:9/img.jpg", content_length=2000),))

    async with aiohttp.ClientSession() as session:
        result = await plan_item(item, session, _tiers(), compress=compressor)

    assert result.mode == "link"
    assert compressor.calls == []


def _slideshow_parts(pictures: int = 3) -> list[DeliveryResult]:
    parts = [DeliveryResult(mode="attach", kind=MediaKind.AUDIO, data=b"sound", ext="mp3", size=5)]
    parts += [DeliveryResult(mode="attach", kind=MediaKind.IMAGE, data=bytes([i]), ext="jpeg", size=1) for i in range(pictures)]
    return parts


class _FakeComposer:
    def __init__(self, result: bytes = b"\0" * 100, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple[list[bytes], bytes, str | None]] = []

    async def __call__(self, images: list[bytes], audio: bytes, codec: str | None) -> bytes:
        self.calls.append((images, audio, codec))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.mark.asyncio
async def test_slideshow_parts_become_one_video() -> None:
    composer = _FakeComposer()

    results = await merge_slideshow(_slideshow_parts(), _tiers(), compose=composer)

    assert composer.calls == [([b"\x00", b"\x01", b"\x02"], b"sound", "libx264")]
    assert len(results) == 1
    assert results[0].kind is MediaKind.VIDEO
    assert results[0].filename == "video.mp4"
    assert results[0].size == 100


@pytest.mark.asyncio
async def test_failed_render_keeps_pictures_and_sound() -> None:
    parts = _slideshow_parts()

    results = await merge_slideshow(parts, _tiers(), compose=_FakeComposer(error=EncodeError("ffmpeg failed", exit_code=1)))

    assert results == parts


@pytest.mark.asyncio
async def test_oversized_render_keeps_pictures_and_sound() -> None:
    parts = _slideshow_parts()

    results = await merge_slideshow(parts, _tiers(), compose=_FakeComposer(result=b"\0" * 2000))

    assert results == parts


@pytest.mark.asyncio
async def test_slideshow_left_alone_when_disabled_or_partly_linked() -> None:
    composer = _FakeComposer()
    linked = _slideshow_parts()
    linked[1] = DeliveryResult(mode="link", kind=MediaKind.IMAGE, href="https://cdn/big.jpg", size=5000)
    video_post = [DeliveryResult(mode="attach", kind=MediaKind.VIDEO, data=b"v", size=1)]

    assert await merge_slideshow(_slideshow_parts(), _tiers(slideshow_video=False), compose=composer) == _slideshow_parts()
    assert await merge_slideshow(linked, _tiers(), compose=composer) == linked
    assert await merge_slideshow(video_post, _tiers(), compose=composer) == video_post
    assert composer.calls == []
