"""
Backend base class, the interface for every extraction source.

A backend turns a post URL into MediaItems with unvalidated variants. It never
retries; the resolver owns retries and fallbacks. Every fault is raised as one
of the BackendError subclasses so the resolver can log what broke.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional

import aiohttp

from ..errors import NetworkError, ParseError, UpstreamError
from ..models import MediaItem


_MISSING = object()


class Backend(ABC):
    """
    Abstract base class for all backends.

    Subclasses set ``name`` and implement ``resolve``.
    """

    name: str = "backend"
    requires_api_key: bool = False

    def __init__(self, session: aiohttp.ClientSession):
        self.session = session

    @abstractmethod
    async def resolve(self, source_url: str) -> List[MediaItem]:
        """Return one MediaItem per asset of the post."""

    # ── helpers ──────────────────────────────────────────────

    def require(self, data: Any, *path: Any) -> Any:
        """
        Walk ``path`` through nested dicts/lists.

        Raises ParseError naming the first missing step, so a layout change
        upstream is reported instead of picking the wrong field.
        """
        node = data
        walked: list[str] = []
        for step in path:
            walked.append(str(step))
            value: Any = _MISSING
            if isinstance(step, int) and isinstance(node, list):
                if -len(node) <= step < len(node):
                    value = node[step]
            elif isinstance(node, Mapping):
                value = node.get(step, _MISSING)
            if value is _MISSING or value is None:
                raise ParseError(f"missing field {'.'.join(walked)}", backend=self.name)
            node = value
        return node

    async def _read_json(self, resp: aiohttp.ClientResponse, what: str) -> Any:
        if not 200 <= resp.status < 300:
            body = await resp.text(errors="replace")
            raise UpstreamError(f"{what} returned {resp.reason}: {body[:200]}", backend=self.name, status=resp.status)
        text = await resp.text(errors="replace")
        try:
            return json.loads(text)
        except ValueError as err:
            raise ParseError(f"{what} returned non-JSON body: {text[:200]!r}", backend=self.name) from err

    async def _get_json(self, url: str, *, params: Optional[Mapping[str, str]] = None, headers: Optional[Mapping[str, str]] = None) -> Any:
        try:
            async with self.session.get(url, params=params, headers=headers) as resp:
                return await self._read_json(resp, f"GET {url}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise NetworkError(f"GET {url} failed: {err!r}", backend=self.name) from err

    async def _post_json(self, url: str, *, json_body: Any = None, data: Any = None, headers: Optional[Mapping[str, str]] = None) -> Any:
        try:
            async with self.session.post(url, json=json_body, data=data, headers=headers) as resp:
                return await self._read_json(resp, f"POST {url}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise NetworkError(f"POST {url} failed: {err!r}", backend=self.name) from err

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
