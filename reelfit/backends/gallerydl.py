"""Instagram extraction through the gallery-dl command line tool."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import List, Optional
from urllib.parse import urlparse

import aiohttp

from ..config import get_gallerydl_cookies_file
from ..errors import ParseError, UpstreamError
from ..models import MediaItem, MediaKind, Variant
from .base import Backend


logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "webp", "heic"}
VIDEO_EXTENSIONS = {"mp4", "mov", "webm"}
AUDIO_EXTENSIONS = {"mp3", "m4a", "aac"}


def _kind_for(url: str) -> Optional[MediaKind]:
    ext = os.path.splitext(urlparse(url).path)[1].lstrip(".").lower()
    if ext in IMAGE_EXTENSIONS:
        return MediaKind.IMAGE
    if ext in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    if ext in AUDIO_EXTENSIONS:
        return MediaKind.AUDIO
    return None


class GalleryDlBackend(Backend):
    name = "gallerydl"

    def __init__(self, session: aiohttp.ClientSession, *, binary: str = "gallery-dl", cookies_file: Optional[str] = None):
        super().__init__(session)
        self.binary = binary
        self.cookies_file = cookies_file or get_gallerydl_cookies_file()

    def build_command(self, source_url: str) -> List[str]:
        cmd = [self.binary, "--get-urls"]
        if self.cookies_file:
            cmd += ["--cookies", self.cookies_file]
        cmd.append(source_url)
        return cmd

    async def resolve(self, source_url: str) -> List[MediaItem]:
        cmd = self.build_command(source_url)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise UpstreamError(f"failed to spawn {self.binary}: {err}", backend=self.name) from err
        out, err_out = await proc.communicate()
        stderr = err_out.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            tail = stderr.strip()[-300:]
            raise UpstreamError(f"{self.binary} failed: {tail}", backend=self.name, exit_code=proc.returncode)
        return self.parse_output(out.decode("utf-8", errors="replace"))

    def parse_output(self, text: str) -> List[MediaItem]:
        # "| url" lines are fallbacks for the url printed right above them
        groups: List[List[str]] = []
        for raw in text.splitlines():
            line = raw.strip()
            if not line:
                continue
            if line.startswith("|"):
                if not groups:
                    raise ParseError(f"fallback url before any primary url: {line!r}", backend=self.name)
                groups[-1].append(line.lstrip("| ").strip())
                continue
            groups.append([line])

        if not groups:
            raise ParseError("no content links were printed", backend=self.name)

        items: List[MediaItem] = []
        for urls in groups:
            kind = _kind_for(urls[0])
            if kind is None:
                raise ParseError(f"unrecognised file extension in {urls[0]}", backend=self.name)
            items.append(MediaItem(kind, tuple(Variant(href=u, label="fallback" if i else "primary") for i, u in enumerate(urls))))
        logger.debug("%s: %d items", self.name, len(items))
        return items
