"""
Exception taxonomy shared by resolution and transcoding.

Backend failures are collected by the resolver and only surface wrapped in
AllBackendsExhaustedError. Transcode failures surface directly so the caller
can fall back to a link or report the failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence


class ReelfitError(Exception):
    """Base class for every failure raised by this package."""


# ── Resolution ───────────────────────────────────────────────


class ResolutionError(ReelfitError):
    pass


class BackendError(ResolutionError):
    def __init__(self, message: str, *, backend: str = "?"):
        super().__init__(message)
        self.backend = backend

    def __str__(self) -> str:
        return f"({self.backend}) {self.args[0]}"


class NetworkError(BackendError):
    """Transport fault: connection refused, reset, timeout."""


class CookieOrSessionError(BackendError):
    """The seed page handshake did not hand out the expected cookie or tokens."""


class ParseError(BackendError):
    """Expected markup or JSON field is missing."""


class UpstreamError(BackendError):
    def __init__(
        self,
        message: str,
        *,
        backend: str = "?",
        status: Optional[int] = None,
        exit_code: Optional[int] = None,
    ):
        super().__init__(message, backend=backend)
        self.status = status
        self.exit_code = exit_code

    def __str__(self) -> str:
        details = []
        if self.status is not None:
            details.append(f"status={self.status}")
        if self.exit_code is not None:
            details.append(f"exit_code={self.exit_code}")
        suffix = f" [{', '.join(details)}]" if details else ""
        return f"({self.backend}) {self.args[0]}{suffix}"


class UnsupportedContentError(BackendError):
    """Live broadcasts, unknown product types, links nothing can handle."""


class UnavailableError(ResolutionError):
    def __init__(self, message: str, *, url: str = ""):
        super().__init__(message)
        self.url = url


@dataclass
class AttemptFailure:
    backend: str
    attempt: int
    error: ReelfitError

    def __str__(self) -> str:
        return f"{self.backend}#{self.attempt}: {self.error}"


class AllBackendsExhaustedError(ResolutionError):
    def __init__(self, url: str, failures: Sequence[AttemptFailure]):
        self.url = url
        self.failures: List[AttemptFailure] = list(failures)
        summary = "; ".join(str(f) for f in self.failures) or "empty backend chain"
        super().__init__(f"all backends failed for {url}: {summary}")


# ── Transcoding ──────────────────────────────────────────────


class TranscodeError(ReelfitError):
    pass


class _ToolError(TranscodeError):
    def __init__(self, message: str, *, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr

    def __str__(self) -> str:
        text = self.args[0]
        if self.exit_code is not None:
            text += f" (exit code {self.exit_code})"
        if self.stderr:
            text += f": {self.stderr.strip()[-300:]}"
        return text


class ProbeError(_ToolError):
    pass


class EncodeError(_ToolError):
    pass


class BudgetUnreachableError(TranscodeError):
    def __init__(self, target_video_bitrate: int, floor: int):
        super().__init__(
            f"target video bitrate {target_video_bitrate} b/s is below the encoder floor {floor} b/s"
        )
        self.target_video_bitrate = target_video_bitrate
        self.floor = floor


class CompressionFailedError(TranscodeError):
    def __init__(self, output_bytes: int, byte_budget: int):
        super().__init__(f"compressed output is {output_bytes} bytes, budget is {byte_budget}")
        self.output_bytes = output_bytes
        self.byte_budget = byte_budget
