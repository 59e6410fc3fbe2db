"""
TikTok page scrape through musicaldown.com.

Two-step dance: the seed page hands out a ``session_data`` cookie plus a pair
of form fields, and only a POST carrying both returns the results page.
Links on the results page are picked by their button text.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import List, Optional

import aiohttp
from bs4 import BeautifulSoup

from ..errors import CookieOrSessionError, NetworkError, ParseError, UpstreamError
from ..models import MediaItem, MediaKind, Variant
from .base import Backend


logger = logging.getLogger(__name__)

BASE_URL = "https://musicaldown.com"
SLIDER_URL = "https://mddown.xyz/slider"

_SLIDESHOW_MARKER = "Convert Video Now"
_SLIDESHOW_DATA_RE = re.compile(r"data:\s*{\s*data:\s*'(?P<data>[^']+)'")


@dataclass(frozen=True)
class HandshakeForm:
    link_field: str
    token_field: str
    token_value: str


def parse_handshake_form(html: str) -> Optional[HandshakeForm]:
    soup = BeautifulSoup(html, "html.parser")
    form = soup.find("form") or soup
    link_field = None
    token = None
    for tag in form.find_all("input"):
        name = tag.get("name")
        if not name:
            continue
        input_type = (tag.get("type") or "text").lower()
        if link_field is None and input_type in {"text", "url"}:
            link_field = name
        elif token is None and input_type == "hidden" and name != "verify" and tag.get("value"):
            token = (name, tag["value"])
    if link_field is None or token is None:
        return None
    return HandshakeForm(link_field=link_field, token_field=token[0], token_value=token[1])


def parse_result_links(html: str) -> List[Variant]:
    """Pick video links by button text; clean copies come before watermarked ones."""
    soup = BeautifulSoup(html, "html.parser")
    clean: List[Variant] = []
    marked: List[Variant] = []
    seen: set[str] = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        text = " ".join(anchor.get_text(" ").split())
        if not href.startswith("http") or href in seen:
            continue
        if "MP4" not in text.upper():
            continue
        seen.add(href)
        if "watermark" in text.lower():
            marked.append(Variant(href=href, watermarked=True, label="watermark"))
        elif "HD" in text.upper():
            clean.append(Variant(href=href, label="hd"))
        else:
            clean.append(Variant(href=href, label="mp4"))
    return clean + marked


def parse_slideshow_token(html: str) -> Optional[str]:
    match = _SLIDESHOW_DATA_RE.search(html)
    return match.group("data") if match else None


class MusicalDownBackend(Backend):
    name = "musicaldown"

    def __init__(self, session: aiohttp.ClientSession, *, base_url: str = BASE_URL, slider_url: str = SLIDER_URL):
        super().__init__(session)
        self.base_url = base_url.rstrip("/")
        self.slider_url = slider_url

    async def resolve(self, source_url: str) -> List[MediaItem]:
        html = await self._submit(source_url)
        if _SLIDESHOW_MARKER in html:
            token = parse_slideshow_token(html)
            if token is None:
                raise ParseError("slideshow page without render token", backend=self.name)
            video_url = await self._render_slideshow(token)
            return [MediaItem(MediaKind.VIDEO, (Variant(href=video_url, label="slideshow"),))]

        variants = parse_result_links(html)
        if not variants:
            raise ParseError("no MP4 download buttons on results page", backend=self.name)
        logger.debug("%s: %d video links for %s", self.name, len(variants), source_url)
        return [MediaItem(MediaKind.VIDEO, tuple(variants))]

    async def _submit(self, source_url: str) -> str:
        headers = {"Accept": "*/*", "Referer": self.base_url, "Origin": self.base_url}
        try:
            async with self.session.get(f"{self.base_url}/en", headers=headers) as resp:
                if resp.status != 200:
                    raise CookieOrSessionError(f"seed page returned {resp.status}", backend=self.name)
                seed_html = await resp.text(errors="replace")
                cookie = resp.cookies.get("session_data")
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise NetworkError(f"seed page request failed: {err!r}", backend=self.name) from err

        if cookie is None or not cookie.value:
            raise CookieOrSessionError("seed page set no session_data cookie", backend=self.name)
        form = parse_handshake_form(seed_html)
        if form is None:
            raise CookieOrSessionError("seed page has no link/token inputs", backend=self.name)

        data = aiohttp.FormData()
        data.add_field("verify", "1")
        data.add_field(form.link_field, source_url)
        data.add_field(form.token_field, form.token_value)
        post_headers = {
            "Origin": self.base_url,
            "Referer": f"{self.base_url}/en",
            "Cookie": f"session_data={cookie.value}",
        }
        try:
            async with self.session.post(f"{self.base_url}/download", data=data, headers=post_headers) as resp:
                if not 200 <= resp.status < 300:
                    raise UpstreamError("download form rejected", backend=self.name, status=resp.status)
                return await resp.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise NetworkError(f"download form request failed: {err!r}", backend=self.name) from err

    async def _render_slideshow(self, token: str) -> str:
        data = aiohttp.FormData()
        data.add_field("data", token)
        payload = await self._post_json(
            self.slider_url,
            data=data,
            headers={"Origin": self.base_url, "Referer": f"{self.base_url}/en"},
        )
        url = self.require(payload, "url")
        if not isinstance(url, str) or not url.startswith("http"):
            raise ParseError(f"slider answered with bad url {url!r}", backend=self.name)
        return url
