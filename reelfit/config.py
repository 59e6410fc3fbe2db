import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .models import BackendSpec, Platform


logger = logging.getLogger(__name__)

# name:retries lists, first entry is tried first
DEFAULT_BACKEND_CHAINS = {
    Platform.TIKTOK: "tiktok_scraper7:3,musicaldown:2",
    Platform.INSTAGRAM: "rocketapi:2,gallerydl:2",
    Platform.YOUTUBE: "ytdlp:3,ytapi:2",
    Platform.YOUTUBE_SHORT: "ytdlp:3,ytapi:2",
}

_CHAIN_ENV = {
    Platform.TIKTOK: "TIKTOK_BACKENDS",
    Platform.INSTAGRAM: "INSTAGRAM_BACKENDS",
    Platform.YOUTUBE: "YOUTUBE_BACKENDS",
    Platform.YOUTUBE_SHORT: "YOUTUBE_SHORT_BACKENDS",
}

MB = 1024 * 1024


def _load_env_once() -> None:
    # idempotent load
    load_dotenv()


def get_bot_token() -> str:
    _load_env_once()
    token = os.getenv("BOT_TOKEN", "").strip()
    if not token:
        raise RuntimeError(
            "BOT_TOKEN is not set. Create .env with BOT_TOKEN=... or set env variable."
        )
    return token


def get_rapidapi_key() -> str | None:
    _load_env_once()
    key = (os.getenv("RAPIDAPI_KEY") or "").strip()
    return key or None


def get_log_level() -> str:
    _load_env_once()
    return (os.getenv("LOG_LEVEL") or "INFO").strip().upper()


def get_codec() -> str | None:
    """Encoder passed to ffmpeg as -c:v; unset means ffmpeg's default for mp4."""
    _load_env_once()
    codec = (os.getenv("CODEC") or "").strip()
    return codec or None


def get_ffmpeg_bin() -> str:
    _load_env_once()
    return (os.getenv("FFMPEG_BIN") or "ffmpeg").strip()


def get_ffprobe_bin() -> str:
    _load_env_once()
    return (os.getenv("FFPROBE_BIN") or "ffprobe").strip()


def get_ytdlp_cookies_file() -> str | None:
    _load_env_once()
    path = (os.getenv("YTDLP_COOKIES_FILE") or "").strip()
    if path and os.path.exists(path):
        return path
    return None


def get_ytdlp_cookies_from_browser() -> str | None:
    _load_env_once()
    # Examples: chrome | chromium | firefox | safari (platform dependent)
    val = (os.getenv("YTDLP_COOKIES_FROM_BROWSER") or "").strip()
    return val or None


def get_gallerydl_cookies_file() -> str | None:
    _load_env_once()
    path = (os.getenv("GALLERYDL_COOKIES_FILE") or "").strip()
    if path and os.path.exists(path):
        return path
    return None


def _get_bool_env(name: str, default: bool) -> bool:
    _load_env_once()
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on", "y"}


def _get_int_env(name: str, default: int, *, min_value: int | None = None, max_value: int | None = None) -> int:
    _load_env_once()
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    if min_value is not None:
        value = max(min_value, value)
    if max_value is not None:
        value = min(max_value, value)
    return value


def _get_float_env(
    name: str,
    default: float,
    *,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    _load_env_once()
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if min_value is not None:
        value = max(min_value, value)
    if max_value is not None:
        value = min(max_value, value)
    return value


def get_compression_enabled() -> bool:
    return _get_bool_env("ENABLE_COMPRESSION", True)


def get_slideshow_video_enabled() -> bool:
    return _get_bool_env("SLIDESHOW_VIDEO", True)


def get_attach_limit_bytes() -> int:
    """Largest file sent as a bot attachment (bots are capped at ~50 MB)."""
    return _get_int_env("ATTACH_LIMIT_MB", default=48, min_value=1, max_value=2000) * MB


def get_compress_source_limit_bytes() -> int:
    """Sources above this size are not downloaded for compression at all."""
    return _get_int_env("COMPRESS_SOURCE_LIMIT_MB", default=100, min_value=1, max_value=4096) * MB


def get_compress_failure_policy() -> str:
    _load_env_once()
    # Only: link | fail
    policy = (os.getenv("COMPRESS_FAILURE_POLICY") or "link").strip().lower()
    if policy not in {"link", "fail"}:
        policy = "link"
    return policy


def get_muxing_margin() -> float:
    """Share of the budget left after container overhead (4% reserved by default)."""
    return _get_float_env("MUXING_MARGIN", default=0.96, min_value=0.5, max_value=1.0)


def get_safety_margin() -> float:
    """Headroom for encoders overshooting the requested bitrate."""
    return _get_float_env("SAFETY_MARGIN", default=0.90, min_value=0.5, max_value=1.0)


def get_encoder_floor_bps() -> int:
    # h264_omx on a Raspberry Pi can't hold less than ~150 kb/s
    return _get_int_env("ENCODER_FLOOR_BPS", default=150_000, min_value=1)


def get_compression_poll_interval() -> float:
    return _get_float_env("COMPRESSION_POLL_INTERVAL", default=1.0, min_value=0.01, max_value=30.0)


def get_http_timeout() -> float:
    return _get_float_env("HTTP_TIMEOUT", default=30.0, min_value=1.0, max_value=600.0)


def get_validation_concurrency() -> int:
    """Maximum number of parallel content-length probes per resolution."""
    return _get_int_env("VALIDATION_CONCURRENCY", default=4, min_value=1, max_value=64)


def get_validator_stream_limit_bytes() -> int:
    """Cap for counting a body when the server sends no Content-Length."""
    return _get_int_env("VALIDATOR_STREAM_LIMIT_MB", default=200, min_value=1) * MB


def get_probe_concurrency() -> int:
    """Maximum number of parallel metadata probes (yt-dlp extract_info)."""
    return _get_int_env("PROBE_CONCURRENCY", default=4, min_value=1)


def get_thread_pool_workers() -> int:
    default = max(4, get_probe_concurrency() * 2)
    return _get_int_env("DL_THREAD_WORKERS", default=default, min_value=2, max_value=128)


def get_user_cooldown_seconds() -> int:
    """Delay between successive requests from the same user."""
    return _get_int_env("USER_REQUEST_COOLDOWN", default=5, min_value=0, max_value=600)


def parse_backend_chain(raw: str) -> list[BackendSpec]:
    """Parse ``name:retries,name:retries``; a missing count means one attempt."""
    chain: list[BackendSpec] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        name, _, retries = part.partition(":")
        name = name.strip().lower()
        try:
            count = int(retries) if retries.strip() else 1
        except ValueError:
            logger.warning("ignoring bad retry count in backend chain entry %r", part)
            count = 1
        chain.append(BackendSpec(name=name, max_retries=max(1, count)))
    return chain


def get_backend_chain(platform: Platform) -> tuple[BackendSpec, ...]:
    # imported here, the registry pulls in yt-dlp and friends
    from .backends import BACKENDS

    _load_env_once()
    raw = (os.getenv(_CHAIN_ENV[platform]) or "").strip() or DEFAULT_BACKEND_CHAINS[platform]
    has_key = get_rapidapi_key() is not None
    chain: list[BackendSpec] = []
    for spec in parse_backend_chain(raw):
        backend_cls = BACKENDS.get(spec.name)
        if backend_cls is None:
            logger.warning("unknown backend %r in %s chain, skipped", spec.name, platform.value)
            continue
        if backend_cls.requires_api_key and not has_key:
            logger.warning("backend %r needs RAPIDAPI_KEY, skipped for %s", spec.name, platform.value)
            continue
        chain.append(spec)
    return tuple(chain)


@dataclass
class DeliveryTiers:
    attach_limit: int
    compress_source_limit: int
    compression_enabled: bool
    on_compress_failure: str  # 'link' | 'fail'
    codec: str | None
    slideshow_video: bool = True


def get_delivery_tiers() -> DeliveryTiers:
    return DeliveryTiers(
        attach_limit=get_attach_limit_bytes(),
        compress_source_limit=get_compress_source_limit_bytes(),
        compression_enabled=get_compression_enabled(),
        on_compress_failure=get_compress_failure_policy(),
        codec=get_codec(),
        slideshow_video=get_slideshow_video_enabled(),
    )
