"""TikTok lookup through the tiktok-scraper7 RapidAPI (tikwm)."""

from __future__ import annotations

from typing import Any, List, Optional

import aiohttp

from ..config import get_rapidapi_key
from ..errors import CookieOrSessionError, ParseError, UnsupportedContentError
from ..models import MediaItem, MediaKind, Variant
from .base import Backend


API_HOST = "tiktok-scraper7.p.rapidapi.com"


class TikTokScraper7Backend(Backend):
    name = "tiktok_scraper7"
    requires_api_key = True

    def __init__(self, session: aiohttp.ClientSession, *, api_key: Optional[str] = None, api_url: Optional[str] = None):
        super().__init__(session)
        self.api_key = api_key or get_rapidapi_key()
        self.api_url = api_url or f"https://{API_HOST}/"

    async def resolve(self, source_url: str) -> List[MediaItem]:
        if not self.api_key:
            raise CookieOrSessionError("RapidAPI key is not configured", backend=self.name)
        payload = await self._get_json(
            self.api_url,
            params={"url": source_url, "hd": "0"},
            headers={"X-RapidAPI-Key": self.api_key, "X-RapidAPI-Host": API_HOST},
        )
        return self.parse_payload(payload)

    def parse_payload(self, payload: Any) -> List[MediaItem]:
        msg = payload.get("msg") if isinstance(payload, dict) else None
        if msg != "success":
            # live broadcasts and dead links end up here
            raise UnsupportedContentError(f"API answered msg={msg!r}", backend=self.name)
        data = self.require(payload, "data")
        if not isinstance(data, dict):
            raise ParseError("data is not an object", backend=self.name)

        images = data.get("images")
        if images:
            if not isinstance(images, list):
                raise ParseError("data.images is not a list", backend=self.name)
            audio_url = data.get("music") or self.require(data, "play")
            items = [MediaItem(MediaKind.AUDIO, (Variant(href=audio_url, label="music"),))]
            for index, image_url in enumerate(images):
                if not isinstance(image_url, str) or not image_url:
                    raise ParseError(f"data.images.{index} is not a URL", backend=self.name)
                items.append(MediaItem(MediaKind.IMAGE, (Variant(href=image_url, label=f"image{index}"),)))
            return items

        variants = [Variant(href=self.require(data, "play"), label="play")]
        wmplay = data.get("wmplay")
        if wmplay:
            variants.append(Variant(href=wmplay, watermarked=True, label="wmplay"))
        return [MediaItem(MediaKind.VIDEO, tuple(variants))]
