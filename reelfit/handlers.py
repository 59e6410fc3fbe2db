import asyncio
import logging
from contextlib import suppress
from typing import List

from aiogram import F, Router
from aiogram.enums import ChatAction
from aiogram.exceptions import TelegramAPIError
from aiogram.filters import Command, CommandStart
from aiogram.types import (
    BufferedInputFile,
    CallbackQuery,
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    LinkPreviewOptions,
    Message,
)
from aiogram.utils.media_group import MediaGroupBuilder

from .config import get_attach_limit_bytes, get_delivery_tiers, get_user_cooldown_seconds
from .delivery import DeliveryResult, deliver, is_slideshow, pick_attachable
from .errors import ResolutionError
from .i18n import t
from .models import ExtractionTask, MediaKind
from .resolver import resolve_media
from .state import cooldown_remaining, get_user_lang, set_user_lang
from .tasks import find_task
from .ui import human_size


logger = logging.getLogger(__name__)

router = Router()

# Telegram albums hold 2..10 items
ALBUM_SIZE = 10

_ACTIVE_JOBS: set[asyncio.Task] = set()


def _track_task(task: asyncio.Task) -> None:
    _ACTIVE_JOBS.add(task)

    def _cleanup(fut: asyncio.Task) -> None:
        _ACTIVE_JOBS.discard(fut)
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc:
            logger.error("media job failed", exc_info=exc)

    task.add_done_callback(_cleanup)


def _lang_of(message: Message) -> str:
    return get_user_lang(message.from_user.id) if message.from_user else "ru"


async def _edit(wait_msg: Message, text: str) -> None:
    with suppress(TelegramAPIError):
        await wait_msg.edit_text(text, link_preview_options=LinkPreviewOptions(is_disabled=True))


def _link_text(result: DeliveryResult, lang: str) -> str:
    size = human_size(result.size, lang)
    if result.reason == "compression_failed":
        return t(lang, "link_warning", size=size)
    if result.reason == "too_large":
        return f"{t(lang, 'too_large', size=size)}\n{t(lang, 'direct_link')}"
    return t(lang, "direct_link")


async def _send_link(message: Message, result: DeliveryResult, lang: str) -> None:
    kb = InlineKeyboardMarkup(
        inline_keyboard=[[InlineKeyboardButton(text=t(lang, "original"), url=result.href)]]
    )
    await message.answer(
        _link_text(result, lang),
        reply_markup=kb,
        link_preview_options=LinkPreviewOptions(is_disabled=True),
    )


async def _send_images(message: Message, images: List[DeliveryResult]) -> None:
    for start in range(0, len(images), ALBUM_SIZE):
        chunk = images[start:start + ALBUM_SIZE]
        if len(chunk) == 1:
            await message.answer_photo(BufferedInputFile(chunk[0].data, filename=chunk[0].filename))
            continue
        album = MediaGroupBuilder()
        for image in chunk:
            album.add_photo(media=BufferedInputFile(image.data, filename=image.filename))
        await message.answer_media_group(media=album.build())


async def send_results(message: Message, results: List[DeliveryResult], lang: str) -> bool:
    """Post every planned item; returns False when nothing could be sent."""
    sent = False
    images = [r for r in results if r.mode == "attach" and r.kind is MediaKind.IMAGE]
    if images:
        await _send_images(message, images)
        sent = True
    for result in results:
        if result.mode == "attach" and result.kind is MediaKind.VIDEO:
            await message.answer_video(BufferedInputFile(result.data, filename=result.filename), supports_streaming=True)
            sent = True
        elif result.mode == "attach" and result.kind is MediaKind.AUDIO:
            await message.answer_audio(BufferedInputFile(result.data, filename=result.filename))
            sent = True
        elif result.mode == "link" and result.href:
            await _send_link(message, result, lang)
            sent = True
    return sent


async def _run_media_job(message: Message, wait_msg: Message, task: ExtractionTask, lang: str) -> None:
    try:
        items = await resolve_media(task.url)
    except ResolutionError as err:
        logger.warning("resolution failed for %s (%s): %s", task.url, task.platform.value, err)
        await _edit(wait_msg, t(lang, "error_extract"))
        return

    tiers = get_delivery_tiers()
    if tiers.slideshow_video and is_slideshow([item.kind for item in items]):
        await _edit(wait_msg, t(lang, "rendering_slideshow"))
    elif tiers.compression_enabled and any(
        item.kind is MediaKind.VIDEO and pick_attachable(item, tiers.attach_limit) is None for item in items
    ):
        await _edit(wait_msg, t(lang, "compressing"))

    results = await deliver(items, tiers)
    failed = [r for r in results if r.mode == "fail"]
    sent = await send_results(message, results, lang)
    if failed:
        await _edit(wait_msg, t(lang, failed[0].reason or "error_download", size=human_size(failed[0].size, lang)))
        return
    if not sent:
        await _edit(wait_msg, t(lang, "error_download"))
        return
    with suppress(TelegramAPIError):
        await wait_msg.delete()


async def _guarded_media_job(message: Message, wait_msg: Message, task: ExtractionTask, lang: str) -> None:
    try:
        await _run_media_job(message, wait_msg, task, lang)
    except Exception:
        logger.exception("media job crashed for %s", task.url)
        await _edit(wait_msg, t(lang, "error_download"))


@router.message(CommandStart())
async def on_start(message: Message) -> None:
    await message.answer(t(_lang_of(message), "start"))


@router.message(Command("help"))
async def on_help(message: Message) -> None:
    lang = _lang_of(message)
    await message.answer(
        t(lang, "help", limit=human_size(get_attach_limit_bytes(), lang)),
        link_preview_options=LinkPreviewOptions(is_disabled=True),
    )


@router.message(Command("settings"))
async def on_settings(message: Message) -> None:
    lang = _lang_of(message)
    kb = InlineKeyboardMarkup(
        inline_keyboard=[
            [
                InlineKeyboardButton(text=t(lang, "lang_ru"), callback_data="lang|ru"),
                InlineKeyboardButton(text=t(lang, "lang_en"), callback_data="lang|en"),
            ]
        ]
    )
    await message.answer(t(lang, "settings_title"), reply_markup=kb)


@router.callback_query(F.data.startswith("lang|"))
async def on_lang_switch(cb: CallbackQuery) -> None:
    code = (cb.data or "").split("|", 1)[-1]
    if cb.from_user:
        set_user_lang(cb.from_user.id, code)
        await cb.answer("OK")
        if cb.message:
            await cb.message.edit_text(t(code, "settings_saved", lang=("Русский" if code == "ru" else "English")))


@router.message(F.text)
async def on_text_with_url(message: Message) -> None:
    task = find_task(message.text)
    if task is None:
        return  # not a supported link

    lang = _lang_of(message)
    if message.from_user:
        wait = cooldown_remaining(message.from_user.id, get_user_cooldown_seconds())
        if wait:
            await message.reply(t(lang, "cooldown_active", seconds=wait))
            return

    with suppress(TelegramAPIError):
        await message.bot.send_chat_action(message.chat.id, ChatAction.UPLOAD_VIDEO)

    wait_msg = await message.reply(t(lang, "preparing"))
    job = asyncio.create_task(
        _guarded_media_job(message, wait_msg, task, lang),
        name=f"media:{task.platform.value}",
    )
    _track_task(job)
