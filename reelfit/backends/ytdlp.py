import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Callable, Dict, List

import aiohttp
import yt_dlp as ytdlp
from yt_dlp.utils import DownloadError

from ..config import (
    get_probe_concurrency,
    get_thread_pool_workers,
    get_ytdlp_cookies_file,
    get_ytdlp_cookies_from_browser,
)
from ..errors import ParseError, UnsupportedContentError, UpstreamError
from ..models import MediaItem, MediaKind, Variant
from .base import Backend


logger = logging.getLogger(__name__)

_THREAD_POOL = ThreadPoolExecutor(
    max_workers=get_thread_pool_workers(),
    thread_name_prefix="reelfit",
)

_probe_semaphore = asyncio.Semaphore(max(1, get_probe_concurrency()))


async def _run_blocking_with_limit(
    semaphore: asyncio.Semaphore,
    func: Callable,
    *args,
    **kwargs,
):
    loop = asyncio.get_running_loop()
    async with semaphore:
        return await loop.run_in_executor(_THREAD_POOL, partial(func, *args, **kwargs))


def _cookies_opts() -> Dict:
    cookies_file = get_ytdlp_cookies_file()
    cookies_browser = get_ytdlp_cookies_from_browser()
    opts: Dict = {}
    if cookies_file:
        opts["cookiefile"] = cookies_file
    elif cookies_browser:
        opts["cookiesfrombrowser"] = (cookies_browser,)
    return opts


def _extract_info(url: str) -> dict:
    ydl_opts = {
        "quiet": True,
        "no_warnings": True,
        "noplaylist": True,
        "extract_flat": False,
        **_cookies_opts(),
    }
    with ytdlp.YoutubeDL(ydl_opts) as ydl:
        return ydl.extract_info(url, download=False)


def _progressive_formats(formats: List[Dict]) -> List[Dict]:
    cand = []
    for f in formats:
        if not f.get("url"):
            continue
        ac = (f.get("acodec") or "none").lower()
        vc = (f.get("vcodec") or "none").lower()
        proto = (f.get("protocol") or "").lower()
        # manifests are not directly downloadable links
        if "m3u8" in proto or "dash" in proto:
            continue
        if vc != "none" and ac != "none":
            cand.append(f)

    def score(f: Dict) -> float:
        ext = (f.get("ext") or "").lower()
        h = f.get("height") or 0
        tbr = f.get("tbr") or 0
        s = float(h) / 10 + float(tbr)
        if ext == "mp4":
            s += 50
        return s

    cand.sort(key=score, reverse=True)
    return cand


def variants_from_info(info: dict) -> List[Variant]:
    variants = [
        Variant(
            href=f["url"],
            mime_extension=f.get("ext"),
            width=f.get("width"),
            height=f.get("height"),
            label=str(f.get("format_id") or "progressive"),
        )
        for f in _progressive_formats(info.get("formats") or [])
    ]
    if not variants and info.get("url") and (info.get("vcodec") or "none") != "none":
        # single-format extractors put the link on the top level
        variants.append(Variant(href=info["url"], mime_extension=info.get("ext"), label="single"))
    return variants


class YtDlpBackend(Backend):
    name = "ytdlp"

    def __init__(self, session: aiohttp.ClientSession, *, extract: Callable[[str], dict] = _extract_info):
        super().__init__(session)
        self._extract = extract

    async def resolve(self, source_url: str) -> List[MediaItem]:
        try:
            info = await _run_blocking_with_limit(_probe_semaphore, self._extract, source_url)
        except DownloadError as err:
            raise UpstreamError(f"yt-dlp extraction failed: {err}", backend=self.name) from err
        except Exception as err:
            # extractor bugs surface unwrapped when ignoreerrors is off
            raise UpstreamError(f"yt-dlp extractor crashed: {type(err).__name__}: {err}", backend=self.name) from err
        if not isinstance(info, dict):
            raise ParseError("yt-dlp returned no info dict", backend=self.name)
        return self.parse_info(info)

    def parse_info(self, info: dict) -> List[MediaItem]:
        if info.get("is_live") or info.get("live_status") in {"is_live", "is_upcoming"}:
            raise UnsupportedContentError("live broadcasts are not supported", backend=self.name)
        variants = variants_from_info(info)
        if not variants:
            raise ParseError("no progressive audio+video format with a direct url", backend=self.name)
        logger.debug("%s: %d progressive formats for %s", self.name, len(variants), info.get("webpage_url"))
        return [MediaItem(MediaKind.VIDEO, tuple(variants))]
