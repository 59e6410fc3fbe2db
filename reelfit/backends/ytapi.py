"""YouTube lookup through the yt-api RapidAPI (https://rapidapi.com/ytjar/api/yt-api)."""

from __future__ import annotations

import logging
import re
from typing import Any, List, Optional
from urllib.parse import parse_qs, urlparse

import aiohttp

from ..config import get_rapidapi_key
from ..errors import CookieOrSessionError, ParseError, UnsupportedContentError, UpstreamError
from ..models import MediaItem, MediaKind, Variant
from .base import Backend


logger = logging.getLogger(__name__)

API_HOST = "yt-api.p.rapidapi.com"

_VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")


def extract_video_id(url: str) -> Optional[str]:
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    candidate = None
    if host.endswith("youtu.be"):
        candidate = parsed.path.lstrip("/").split("/", 1)[0]
    elif parsed.path.startswith(("/shorts/", "/embed/", "/live/")):
        candidate = parsed.path.split("/")[2]
    else:
        candidate = (parse_qs(parsed.query).get("v") or [None])[0]
    if candidate and _VIDEO_ID_RE.match(candidate):
        return candidate
    return None


class YtApiBackend(Backend):
    name = "ytapi"
    requires_api_key = True

    def __init__(self, session: aiohttp.ClientSession, *, api_key: Optional[str] = None, api_url: Optional[str] = None):
        super().__init__(session)
        self.api_key = api_key or get_rapidapi_key()
        self.api_url = api_url or f"https://{API_HOST}/dl"

    async def resolve(self, source_url: str) -> List[MediaItem]:
        if not self.api_key:
            raise CookieOrSessionError("RapidAPI key is not configured", backend=self.name)
        video_id = extract_video_id(source_url)
        if video_id is None:
            raise UnsupportedContentError(f"no video id in {source_url}", backend=self.name)
        payload = await self._get_json(
            self.api_url,
            params={"id": video_id},
            headers={"X-RapidAPI-Key": self.api_key, "X-RapidAPI-Host": API_HOST},
        )
        return self.parse_payload(payload)

    def parse_payload(self, payload: Any) -> List[MediaItem]:
        status = payload.get("status") if isinstance(payload, dict) else None
        if status != "OK":
            raise UpstreamError(f"API answered status={status!r}", backend=self.name)
        formats = self.require(payload, "formats")
        if not isinstance(formats, list):
            raise ParseError("formats is not a list", backend=self.name)
        variants = tuple(
            Variant(
                href=f["url"],
                width=f.get("width"),
                height=f.get("height"),
                label=f"itag{f.get('itag')}",
            )
            for f in formats
            if isinstance(f, dict) and f.get("url")
        )
        if not variants:
            raise ParseError("formats carry no urls", backend=self.name)
        logger.info("%s: found %d formats (%s)", self.name, len(variants), ",".join(v.label or "?" for v in variants))
        return [MediaItem(MediaKind.VIDEO, variants)]
