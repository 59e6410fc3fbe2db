from typing import Dict, Type

import aiohttp

from .base import Backend
from .gallerydl import GalleryDlBackend
from .musicaldown import MusicalDownBackend
from .rocketapi import RocketApiBackend
from .tiktok_scraper7 import TikTokScraper7Backend
from .ytapi import YtApiBackend
from .ytdlp import YtDlpBackend


BACKENDS: Dict[str, Type[Backend]] = {
    cls.name: cls
    for cls in (
        MusicalDownBackend,
        TikTokScraper7Backend,
        RocketApiBackend,
        GalleryDlBackend,
        YtDlpBackend,
        YtApiBackend,
    )
}


def create_backend(name: str, session: aiohttp.ClientSession) -> Backend:
    try:
        backend_cls = BACKENDS[name]
    except KeyError:
        raise ValueError(f"unknown backend {name!r}") from None
    return backend_cls(session)


__all__ = ["BACKENDS", "Backend", "create_backend"]
