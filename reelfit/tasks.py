import re
from typing import Callable, Optional
from urllib.parse import urlparse

from .config import get_backend_chain
from .models import BackendSpec, ExtractionTask, Platform


URL_RE = re.compile(r"(https?://\S+)")


def classify_url(url: str) -> Optional[Platform]:
    try:
        parsed = urlparse(url)
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if host == "tiktok.com" or host.endswith(".tiktok.com"):
        return Platform.TIKTOK
    if host == "instagram.com" or host.endswith(".instagram.com"):
        return Platform.INSTAGRAM
    if host in {"youtu.be", "youtube.com"} or host.endswith(".youtube.com"):
        if parsed.path.startswith("/shorts/"):
            return Platform.YOUTUBE_SHORT
        return Platform.YOUTUBE
    return None


def build_task(
    url: str,
    chain_for: Callable[[Platform], tuple[BackendSpec, ...]] = get_backend_chain,
) -> Optional[ExtractionTask]:
    platform = classify_url(url)
    if platform is None:
        return None
    return ExtractionTask(platform=platform, url=url, backend_chain=tuple(chain_for(platform)))


def find_task(
    text: str | None,
    chain_for: Callable[[Platform], tuple[BackendSpec, ...]] = get_backend_chain,
) -> Optional[ExtractionTask]:
    """First supported link in a message; other links are ignored."""
    if not text:
        return None
    for match in URL_RE.finditer(text):
        # trailing punctuation from chat text is not part of the link
        url = match.group(1).rstrip(").,!?>]\"'")
        task = build_task(url, chain_for)
        if task is not None:
            return task
    return None
