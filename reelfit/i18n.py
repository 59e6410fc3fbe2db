from __future__ import annotations

MESSAGES = {
    "ru": {
        "start": "<b>Привет!</b> Пришлите ссылку на TikTok, Instagram или YouTube, я найду видео и пришлю его прямо в чат.",
        "help": "<b>Как пользоваться</b>\n• Киньте ссылку, я найду ролик без водяного знака.\n• До ≈{limit} прилетит сразу файлом. Крупнее сожму или дам прямую ссылку.\n• Слайдшоу собираю в одно видео со звуком.",
        "original": "🔗 Оригинал",
        "direct_link": "Файл по ссылке:",
        "settings_title": "Выберите язык интерфейса",
        "lang_ru": "🇷🇺 Русский",
        "lang_en": "🇬🇧 English",
        "settings_saved": "✅ Язык сохранён: {lang}",
        "preparing": "🔄 Подбираю лучший источник…",
        "compressing": "🗜 Сжимаю видео, чтобы оно пролезло в Telegram…",
        "rendering_slideshow": "🎞 Собираю слайдшоу в видео…",
        "error_extract": "😔 Не удалось получить медиа по этой ссылке. Попробуйте позже или другую ссылку.",
        "error_download": "Произошла ошибка при скачивании. Попробуйте другую ссылку.",
        "compression_failed": "😔 Не удалось сжать видео до допустимого размера.",
        "too_large": "Файл слишком большой для отправки ({size}).",
        "link_warning": "⚠️ Сжать не получилось, поэтому вот прямая ссылка ({size}).",
        "cooldown_active": "⌚️ Сделайте паузу {seconds} с, запрос отправлен слишком быстро.",
    },
    "en": {
        "start": "<b>Hey!</b> Send me a TikTok, Instagram or YouTube link and I’ll drop the video right here.",
        "help": "<b>How it works</b>\n• Share a link and I’ll find a copy without a watermark.\n• Up to ≈{limit} comes as a file. Bigger videos get compressed or sent as a direct link.\n• Slideshows are stitched into one video with the sound.",
        "original": "🔗 Original",
        "direct_link": "Download via link:",
        "settings_title": "Choose interface language",
        "lang_ru": "🇷🇺 Russian",
        "lang_en": "🇬🇧 English",
        "settings_saved": "✅ Language saved: {lang}",
        "preparing": "🔄 Lining up the best source…",
        "compressing": "🗜 Compressing the video so Telegram accepts it…",
        "rendering_slideshow": "🎞 Stitching the slideshow into a video…",
        "error_extract": "😔 Could not extract media from this link. Try again later or send another one.",
        "error_download": "Error while downloading. Try another link.",
        "compression_failed": "😔 Compression failed, the video can't fit the size limit.",
        "too_large": "The file is too large to send ({size}).",
        "link_warning": "⚠️ Compression didn’t work out, here is a direct link instead ({size}).",
        "cooldown_active": "⌚️ Easy there! Try again in {seconds}s.",
    },
}


def t(lang: str, key: str, **kwargs) -> str:
    lang = lang if lang in MESSAGES else "ru"
    msg = MESSAGES[lang].get(key) or MESSAGES["ru"].get(key) or key
    if kwargs:
        try:
            return msg.format(**kwargs)
        except (KeyError, IndexError, ValueError):
            return msg
    return msg
