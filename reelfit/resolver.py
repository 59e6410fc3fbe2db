"""
Resolver: drives backend chains until one yields fully validated media.

Each backend in the task's chain gets ``max_retries`` sequential attempts
before the next one is tried. An attempt succeeds when every returned item
keeps at least one variant that passes content-length validation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Sequence

import aiohttp

from .backends import Backend, create_backend
from .config import get_http_timeout, get_validation_concurrency
from .errors import (
    AllBackendsExhaustedError,
    AttemptFailure,
    ReelfitError,
    UnavailableError,
    UnsupportedContentError,
)
from .models import ExtractionTask, MediaItem, Variant
from .tasks import build_task
from .validator import ContentInfo, probe_content_length, validate_variant


logger = logging.getLogger(__name__)

BackendFactory = Callable[[str, aiohttp.ClientSession], Backend]
Prober = Callable[[aiohttp.ClientSession, str], Awaitable[ContentInfo]]


def order_variants(variants: Sequence[Variant]) -> List[Variant]:
    """Clean copies first; otherwise keep the order the backend gave."""
    return [v for v in variants if not v.watermarked] + [v for v in variants if v.watermarked]


async def validate_items(
    items: Sequence[MediaItem],
    session: aiohttp.ClientSession,
    probe: Prober = probe_content_length,
    concurrency: int | None = None,
) -> List[MediaItem]:
    semaphore = asyncio.Semaphore(concurrency or get_validation_concurrency())

    async def _one(variant: Variant) -> Variant | UnavailableError:
        async with semaphore:
            try:
                return await validate_variant(session, variant, probe)
            except UnavailableError as err:
                return err

    validated: List[MediaItem] = []
    for item in items:
        results = await asyncio.gather(*(_one(v) for v in item.variants))
        good = [r for r in results if isinstance(r, Variant)]
        for variant, result in zip(item.variants, results):
            if isinstance(result, UnavailableError):
                logger.info("variant %s (%s) dropped: %s", variant.label or "?", variant.href, result)
        if not good:
            raise UnavailableError(
                f"no variant of {item.kind.value} item passed validation",
                url=item.variants[0].href,
            )
        validated.append(MediaItem(item.kind, tuple(order_variants(good))))
    return validated


async def resolve_with_fallback(
    task: ExtractionTask,
    session: aiohttp.ClientSession,
    *,
    factory: BackendFactory = create_backend,
    probe: Prober = probe_content_length,
) -> List[MediaItem]:
    failures: List[AttemptFailure] = []
    for spec in task.backend_chain:
        backend = factory(spec.name, session)
        for attempt in range(1, spec.max_retries + 1):
            try:
                items = await backend.resolve(task.url)
                if not items:
                    raise UnavailableError(f"{spec.name} returned no media", url=task.url)
                result = await validate_items(items, session, probe)
            except ReelfitError as err:
                failures.append(AttemptFailure(backend=spec.name, attempt=attempt, error=err))
                logger.warning(
                    "%s attempt %d/%d failed for %s: %s: %s",
                    spec.name,
                    attempt,
                    spec.max_retries,
                    task.url,
                    type(err).__name__,
                    err,
                )
                continue
            logger.info(
                "%s resolved %s on attempt %d: %s",
                spec.name,
                task.url,
                attempt,
                ", ".join(item.kind.value for item in result),
            )
            return result
    raise AllBackendsExhaustedError(task.url, failures)


async def resolve_media(url: str) -> List[MediaItem]:
    """Classify ``url`` and resolve it with its configured backend chain."""
    task = build_task(url)
    if task is None:
        raise UnsupportedContentError(f"no backend handles {url}", backend="resolver")
    timeout = aiohttp.ClientTimeout(total=get_http_timeout())
    async with aiohttp.ClientSession(timeout=timeout) as session:
        return await resolve_with_fallback(task, session)
