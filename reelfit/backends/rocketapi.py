"""Instagram lookup through the rocketapi-for-instagram RapidAPI."""

from __future__ import annotations

import logging
import re
from typing import Any, List, Optional

import aiohttp

from ..config import get_rapidapi_key
from ..errors import CookieOrSessionError, ParseError, UnsupportedContentError
from ..models import MediaItem, MediaKind, Variant
from .base import Backend


logger = logging.getLogger(__name__)

API_HOST = "rocketapi-for-instagram.p.rapidapi.com"
API_PATH = "/instagram/media/get_info_by_shortcode"

SHORTCODE_RE = re.compile(r"instagram\.com/(?:[^/]+/)?(?:p|reels?|tv)/(?P<code>[A-Za-z0-9_-]+)")

MEDIA_TYPE_IMAGE = 1
MEDIA_TYPE_VIDEO = 2


def extract_shortcode(url: str) -> Optional[str]:
    match = SHORTCODE_RE.search(url)
    return match.group("code") if match else None


class RocketApiBackend(Backend):
    name = "rocketapi"
    requires_api_key = True

    def __init__(self, session: aiohttp.ClientSession, *, api_key: Optional[str] = None, api_url: Optional[str] = None):
        super().__init__(session)
        self.api_key = api_key or get_rapidapi_key()
        self.api_url = api_url or f"https://{API_HOST}{API_PATH}"

    async def resolve(self, source_url: str) -> List[MediaItem]:
        if not self.api_key:
            raise CookieOrSessionError("RapidAPI key is not configured", backend=self.name)
        shortcode = extract_shortcode(source_url)
        if shortcode is None:
            raise UnsupportedContentError(f"no post shortcode in {source_url}", backend=self.name)
        payload = await self._post_json(
            self.api_url,
            json_body={"shortcode": shortcode},
            headers={"X-RapidAPI-Key": self.api_key, "X-RapidAPI-Host": API_HOST},
        )
        return self.parse_payload(payload)

    def parse_payload(self, payload: Any) -> List[MediaItem]:
        info = self.require(payload, "response", "body", "items", 0)
        if not isinstance(info, dict):
            raise ParseError("response.body.items.0 is not an object", backend=self.name)
        product_type = info.get("product_type")
        code = info.get("code")
        if product_type == "carousel_container":
            items = [self._carousel_entry(entry, code) for entry in self.require(info, "carousel_media")]
            music = self._music(info)
            if music is not None:
                if any(item.kind is MediaKind.VIDEO for item in items):
                    logger.warning("%s: carousel %s mixes music with video entries", self.name, code)
                items.append(music)
            return items
        if product_type == "feed":
            items = [MediaItem(MediaKind.IMAGE, self._image_variants(info))]
            music = self._music(info)
            if music is not None:
                items.append(music)
            return items
        if product_type == "clips":
            return [MediaItem(MediaKind.VIDEO, self._video_variants(info))]
        raise UnsupportedContentError(f"unknown product_type {product_type!r} (shortcode {code})", backend=self.name)

    def _carousel_entry(self, entry: Any, code: Any) -> MediaItem:
        media_type = entry.get("media_type") if isinstance(entry, dict) else None
        if media_type == MEDIA_TYPE_IMAGE:
            return MediaItem(MediaKind.IMAGE, self._image_variants(entry))
        if media_type == MEDIA_TYPE_VIDEO:
            return MediaItem(MediaKind.VIDEO, self._video_variants(entry))
        raise UnsupportedContentError(f"unknown carousel media_type {media_type!r} (shortcode {code})", backend=self.name)

    def _image_variants(self, node: Any) -> tuple:
        candidates = self.require(node, "image_versions2", "candidates")
        variants = tuple(
            Variant(href=c["url"], width=c.get("width"), height=c.get("height"), label="candidate")
            for c in candidates
            if isinstance(c, dict) and c.get("url")
        )
        if not variants:
            raise ParseError("image_versions2.candidates has no urls", backend=self.name)
        return variants

    def _video_variants(self, node: Any) -> tuple:
        versions = self.require(node, "video_versions")
        variants = tuple(
            Variant(href=v["url"], width=v.get("width"), height=v.get("height"), label="video_version")
            for v in versions
            if isinstance(v, dict) and v.get("url")
        )
        if not variants:
            raise ParseError("video_versions has no urls", backend=self.name)
        return variants

    def _music(self, node: Any) -> Optional[MediaItem]:
        metadata = node.get("music_metadata") or {}
        if not isinstance(metadata, dict):
            raise ParseError("music_metadata is not an object", backend=self.name)
        music_info = metadata.get("music_info")
        if not music_info:
            return None
        url = self.require(music_info, "music_asset_info", "progressive_download_url")
        return MediaItem(MediaKind.AUDIO, (Variant(href=url, label="music"),))
