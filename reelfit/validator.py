"""
Content-length validation for candidate media URLs.

CDNs behind scraped services are inconsistent: some reject HEAD with 405,
some answer HEAD without a length. HEAD is tried first and GET is the fallback,
reading the length header or counting the body.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from typing import Mapping, Optional

import aiohttp

from .config import get_validator_stream_limit_bytes
from .errors import NetworkError, UnavailableError
from .models import Variant


logger = logging.getLogger(__name__)

_MEDIA_PREFIXES = ("image/", "video/", "audio/")
_CHUNK = 64 * 1024


@dataclass(frozen=True)
class ContentInfo:
    content_length: int
    mime_extension: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None


def header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup that also works on plain dicts."""
    value = headers.get(name)
    if value is not None:
        return value
    wanted = name.lower()
    for key, val in headers.items():
        if key.lower() == wanted:
            return val
    return None


def _content_length(headers: Mapping[str, str]) -> Optional[int]:
    raw = header_value(headers, "Content-Length")
    if raw is None:
        return None
    try:
        value = int(raw.strip())
    except ValueError:
        return None
    return value if value > 0 else None


def _mime_extension(headers: Mapping[str, str]) -> Optional[str]:
    raw = header_value(headers, "Content-Type")
    if not raw:
        return None
    mime = raw.split(";", 1)[0].strip().lower()
    for prefix in _MEDIA_PREFIXES:
        if mime.startswith(prefix):
            return mime[len(prefix):] or None
    return None


def _image_size(headers: Mapping[str, str]) -> tuple[Optional[int], Optional[int]]:
    # TikTok's image CDN describes the encoded image in x-imagex-extra
    raw = header_value(headers, "x-imagex-extra")
    if not raw:
        return None, None
    try:
        enc = json.loads(raw).get("enc") or {}
        w = enc.get("w")
        h = enc.get("h")
        return (int(w) if w else None, int(h) if h else None)
    except (ValueError, TypeError, AttributeError):
        logger.debug("unparsable x-imagex-extra header: %r", raw)
        return None, None


def _build_info(length: int, headers: Mapping[str, str]) -> ContentInfo:
    width, height = _image_size(headers)
    return ContentInfo(
        content_length=length,
        mime_extension=_mime_extension(headers),
        width=width,
        height=height,
    )


async def _count_body(resp: aiohttp.ClientResponse, url: str, limit: int) -> int:
    total = 0
    async for chunk in resp.content.iter_chunked(_CHUNK):
        total += len(chunk)
        if total > limit:
            raise UnavailableError(f"body of {url} exceeds {limit} bytes without a length header", url=url)
    return total


async def probe_content_length(session: aiohttp.ClientSession, url: str) -> ContentInfo:
    """Size a remote resource. Raises UnavailableError when no length is obtainable."""
    try:
        async with session.head(url, allow_redirects=True) as resp:
            if resp.status == 405:
                logger.debug("HEAD rejected for %s (Allow: %s), retrying with GET", url, header_value(resp.headers, "Allow"))
            elif 200 <= resp.status < 300:
                length = _content_length(resp.headers)
                if length is not None:
                    return _build_info(length, resp.headers)
                logger.debug("HEAD for %s has no usable Content-Length, retrying with GET", url)
            else:
                logger.debug("HEAD for %s returned %s, retrying with GET", url, resp.status)
    except (aiohttp.ClientError, asyncio.TimeoutError) as err:
        logger.debug("HEAD for %s failed (%s), retrying with GET", url, err)

    try:
        async with session.get(url, allow_redirects=True) as resp:
            if not 200 <= resp.status < 300:
                raise UnavailableError(f"GET {url} returned {resp.status}", url=url)
            length = _content_length(resp.headers)
            if length is None:
                length = await _count_body(resp, url, get_validator_stream_limit_bytes())
                if length <= 0:
                    raise UnavailableError(f"{url} has an empty body", url=url)
            return _build_info(length, resp.headers)
    except (aiohttp.ClientError, asyncio.TimeoutError) as err:
        cause = NetworkError(f"GET {url} failed: {err!r}", backend="validator")
        raise UnavailableError(f"could not size {url}", url=url) from cause


async def validate_variant(session: aiohttp.ClientSession, variant: Variant, probe=probe_content_length) -> Variant:
    info = await probe(session, variant.href)
    return replace(
        variant,
        content_length=info.content_length,
        mime_extension=info.mime_extension or variant.mime_extension,
        width=info.width or variant.width,
        height=info.height or variant.height,
    )
