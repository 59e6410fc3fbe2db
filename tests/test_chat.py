import inspect

import pytest

from reelfit import handlers, state
from reelfit.delivery import DeliveryResult
from reelfit.handlers import send_results
from reelfit.i18n import MESSAGES, t
from reelfit.models import MediaKind
from reelfit.ui import human_size


class _FakeMessage:
    def __init__(self) -> None:
        self.sent: list[tuple[str, object]] = []

    async def answer(self, text, **kwargs):
        self.sent.append(("text", text))

    async def answer_photo(self, photo, **kwargs):
        self.sent.append(("photo", photo.filename))

    async def answer_video(self, video, **kwargs):
        self.sent.append(("video", video.filename))

    async def answer_audio(self, audio, **kwargs):
        self.sent.append(("audio", audio.filename))

    async def answer_media_group(self, media, **kwargs):
        self.sent.append(("album", len(media)))


def _attach(kind: MediaKind, ext: str | None = None) -> DeliveryResult:
    return DeliveryResult(mode="attach", kind=kind, data=b"x", ext=ext, size=1)


@pytest.mark.asyncio
async def test_pictures_are_sent_as_albums_plus_audio() -> None:
    message = _FakeMessage()
    results = [_attach(MediaKind.AUDIO, "mpeg")] + [_attach(MediaKind.IMAGE, "jpeg") for _ in range(12)]

    sent = await send_results(message, results, "en")

    assert sent is True
    assert message.sent == [("album", 10), ("album", 2), ("audio", "audio.mpeg")]


@pytest.mark.asyncio
async def test_link_result_carries_warning_text() -> None:
    message = _FakeMessage()
    result = DeliveryResult(mode="link", kind=MediaKind.VIDEO, href="https://cdn/v.mp4", size=80 * 1024 * 1024, reason="compression_failed")

    await send_results(message, [result, _attach(MediaKind.VIDEO)], "en")

    assert message.sent[0] == ("text", t("en", "link_warning", size="80 MB"))
    assert message.sent[1] == ("video", "video.mp4")


@pytest.mark.asyncio
async def test_nothing_sent_for_failed_results() -> None:
    message = _FakeMessage()

    sent = await send_results(message, [DeliveryResult(mode="fail", kind=MediaKind.VIDEO, reason="too_large")], "ru")

    assert sent is False
    assert message.sent == []


def test_cooldown_blocks_rapid_repeats() -> None:
    user_id = 424242
    state._USER_LAST_REQ.pop(user_id, None)

    assert state.cooldown_remaining(user_id, 5, now=100.0) == 0
    assert state.cooldown_remaining(user_id, 5, now=102.0) == 3
    assert state.cooldown_remaining(user_id, 5, now=106.0) == 0
    assert state.cooldown_remaining(user_id, 0, now=106.1) == 0


def test_human_size_per_language() -> None:
    assert human_size(48 * 1024 * 1024, "en") == "48 MB"
    assert human_size(1536, "ru") == "1.5 КБ"
    assert human_size(None) == "?"


def test_languages_share_the_same_keys_and_fall_back() -> None:
    assert set(MESSAGES["ru"]) == set(MESSAGES["en"])
    assert t("de", "original") == MESSAGES["ru"]["original"]
    assert t("en", "unknown_key") == "unknown_key"


def test_every_message_is_used_by_the_bot() -> None:
    source = inspect.getsource(handlers)

    unused = [key for key in MESSAGES["en"] if f'"{key}"' not in source and f"'{key}'" not in source]

    assert unused == []
