import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer
from yt_dlp.utils import DownloadError

from reelfit.backends import BACKENDS, create_backend
from reelfit.backends.ytapi import YtApiBackend, extract_video_id
from reelfit.backends.ytdlp import YtDlpBackend, variants_from_info
from reelfit.errors import ParseError, UnsupportedContentError, UpstreamError
from reelfit.models import MediaKind


INFO = {
    "id": "dQw4w9WgXcQ",
    "webpage_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
    "formats": [
        {"format_id": "140", "url": "https://rr/a.m4a", "ext": "m4a", "acodec": "mp4a", "vcodec": "none"},
        {"format_id": "18", "url": "https://rr/360.mp4", "ext": "mp4", "acodec": "mp4a", "vcodec": "avc1", "height": 360, "width": 640, "tbr": 500},
        {"format_id": "43", "url": "https://rr/360.webm", "ext": "webm", "acodec": "vorbis", "vcodec": "vp8", "height": 360, "tbr": 520},
        {"format_id": "22", "url": "https://rr/720.mp4", "ext": "mp4", "acodec": "mp4a", "vcodec": "avc1", "height": 720, "width": 1280, "tbr": 1200},
        {"format_id": "hls-1", "url": "https://rr/index.m3u8", "ext": "mp4", "acodec": "mp4a", "vcodec": "avc1", "protocol": "m3u8_native", "height": 1080},
        {"format_id": "137", "url": "https://rr/1080.mp4", "ext": "mp4", "acodec": "none", "vcodec": "avc1", "height": 1080},
    ],
}


def test_progressive_formats_only_mp4_and_higher_first() -> None:
    variants = variants_from_info(INFO)

    assert [v.label for v in variants] == ["22", "18", "43"]
    assert variants[0].height == 720
    assert variants[0].mime_extension == "mp4"


@pytest.mark.asyncio
async def test_ytdlp_backend_uses_injected_extractor() -> None:
    calls = []

    def extract(url: str) -> dict:
        calls.append(url)
        return INFO

    items = await YtDlpBackend(None, extract=extract).resolve("https://youtu.be/dQw4w9WgXcQ")

    assert calls == ["https://youtu.be/dQw4w9WgXcQ"]
    assert items[0].kind is MediaKind.VIDEO
    assert items[0].best.href == "https://rr/720.mp4"


@pytest.mark.asyncio
async def test_ytdlp_download_error_is_upstream_error() -> None:
    def extract(url: str) -> dict:
        raise DownloadError("ERROR: [youtube] dQw4w9WgXcQ: Video unavailable")

    with pytest.raises(UpstreamError) as exc_info:
        await YtDlpBackend(None, extract=extract).resolve("https://youtu.be/dQw4w9WgXcQ")

    assert exc_info.value.backend == "ytdlp"


def test_ytdlp_live_stream_is_unsupported() -> None:
    with pytest.raises(UnsupportedContentError):
        YtDlpBackend(None).parse_info({**INFO, "live_status": "is_live"})


def test_ytdlp_without_progressive_formats_is_a_parse_error() -> None:
    with pytest.raises(ParseError):
        YtDlpBackend(None).parse_info({"formats": INFO["formats"][:1]})


@pytest.mark.parametrize(
    "url, video_id",
    [
        ("https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=42", "dQw4w9WgXcQ"),
        ("https://youtu.be/dQw4w9WgXcQ?si=abc", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/shorts/abcdEFGH123", "abcdEFGH123"),
        ("https://m.youtube.com/embed/abcdEFGH123", "abcdEFGH123"),
        ("https://www.youtube.com/channel/UC123", None),
        ("https://www.youtube.com/watch?v=short", None),
    ],
)
def test_video_id_extraction(url: str, video_id: str | None) -> None:
    assert extract_video_id(url) == video_id


def test_ytapi_formats_become_variants_in_api_order() -> None:
    payload = {
        "status": "OK",
        "formats": [
            {"itag": 18, "url": "https://rr/18.mp4", "width": 640, "height": 360},
            {"itag": 22, "url": "https://rr/22.mp4", "width": 1280, "height": 720},
            {"itag": 99},
        ],
    }

    items = YtApiBackend(None, api_key="k").parse_payload(payload)

    assert [v.label for v in items[0].variants] == ["itag18", "itag22"]


def test_ytapi_error_status_is_upstream_error() -> None:
    with pytest.raises(UpstreamError):
        YtApiBackend(None, api_key="k").parse_payload({"status": "fail", "reason": "quota"})


def test_registry_knows_every_backend_by_name() -> None:
    assert set(BACKENDS) == {"musicaldown", "tiktok_scraper7", "rocketapi", "gallerydl", "ytdlp", "ytapi"}
    assert isinstance(create_backend("ytdlp", None), YtDlpBackend)
    with pytest.raises(ValueError):
        create_backend("nope", None)


@pytest.mark.asyncio
async def test_ytapi_requests_video_id_with_rapidapi_headers() -> None:
    seen: dict = {}

    async def lookup(request: web.Request) -> web.Response:
        seen["key"] = request.headers.get("X-RapidAPI-Key")
        seen["host"] = request.headers.get("X-RapidAPI-Host")
        seen["query"] = dict(request.query)
        return web.json_response({"status": "OK", "formats": [{"itag": 18, "url": "https://rr/18.mp4", "width": 640, "height": 360}]})

    app = web.Application()
    app.router.add_get("/dl", lookup)
    server = TestServer(app)
    await server.start_server()
    try:
        async with aiohttp.ClientSession() as session:
            backend = YtApiBackend(session, api_key="test-key", api_url=str(server.make_url("/dl")))
            items = await backend.resolve("https://youtube.com/shorts/dQw4w9WgXcQ?feature=share")
    finally:
        await server.close()

    assert seen == {"key": "test-key", "host": "yt-api.p.rapidapi.com", "query": {"id": "dQw4w9WgXcQ"}}
    assert items[0].best.href == "https://rr/18.mp4"
    assert items[0].best.label == "itag18"


@pytest.mark.asyncio
async def test_ytdlp_unexpected_extractor_error_is_upstream_error() -> None:
    def extract(url: str) -> dict:
        raise KeyError("playerResponse")

    with pytest.raises(UpstreamError) as exc_info:
        await YtDlpBackend(None, extract=extract).resolve("https://youtu.be/dQw4w9WgXcQ")

    assert exc_info.value.backend == "ytdlp"
