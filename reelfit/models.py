from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class MediaKind(str, Enum):
    VIDEO = "video"
    IMAGE = "image"
    AUDIO = "audio"


class Platform(str, Enum):
    TIKTOK = "TikTok"
    INSTAGRAM = "Instagram"
    YOUTUBE = "YouTube"
    YOUTUBE_SHORT = "YouTubeShort"


@dataclass(frozen=True)
class Variant:
    href: str
    content_length: Optional[int] = None
    mime_extension: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    watermarked: bool = False
    label: Optional[str] = None  # adapter-side name, e.g. 'play' | 'wmplay' | 'hd'

    @property
    def validated(self) -> bool:
        return self.content_length is not None


@dataclass(frozen=True)
class MediaItem:
    kind: MediaKind
    variants: Tuple[Variant, ...]

    def __post_init__(self) -> None:
        if not self.variants:
            raise ValueError(f"{self.kind.value} item needs at least one variant")
        # lists from adapters are frozen into tuples
        object.__setattr__(self, "variants", tuple(self.variants))

    @property
    def best(self) -> Variant:
        return self.variants[0]


@dataclass(frozen=True)
class BackendSpec:
    name: str
    max_retries: int = 1


@dataclass(frozen=True)
class ExtractionTask:
    platform: Platform
    url: str
    backend_chain: Tuple[BackendSpec, ...] = field(default_factory=tuple)


@dataclass
class TranscodeJob:
    input_bytes: int
    byte_budget: int
    codec: Optional[str]
    duration_seconds: float = 0.0
    source_video_bitrate: int = 0
    source_audio_bitrate: int = 0
    target_video_bitrate: int = 0
    output_bytes: Optional[int] = None
    output_video_bitrate: Optional[int] = None

    @property
    def cbr_error_percent(self) -> Optional[float]:
        """How far the encoder drifted from the requested bitrate."""
        if not self.output_video_bitrate or self.target_video_bitrate <= 0:
            return None
        return self.output_video_bitrate / (self.target_video_bitrate * 0.01) - 100
