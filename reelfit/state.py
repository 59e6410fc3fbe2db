import time
from typing import Dict


# Simple in-memory user preferences (language) and request timestamps
_USER_LANG: Dict[int, str] = {}
_USER_LAST_REQ: Dict[int, float] = {}


def set_user_lang(user_id: int, lang: str) -> None:
    if lang not in {"ru", "en"}:
        return
    _USER_LANG[user_id] = lang


def get_user_lang(user_id: int) -> str:
    return _USER_LANG.get(user_id, "ru")


def set_user_last_request(user_id: int, ts: float) -> None:
    _USER_LAST_REQ[user_id] = ts


def get_user_last_request(user_id: int) -> float | None:
    return _USER_LAST_REQ.get(user_id)


def cooldown_remaining(user_id: int, cooldown: float, now: float | None = None) -> int:
    """Seconds the user still has to wait; 0 records the request as accepted."""
    now = time.monotonic() if now is None else now
    last = get_user_last_request(user_id)
    if last is not None and cooldown > 0 and (now - last) < cooldown:
        return max(1, int(round(cooldown - (now - last))))
    set_user_last_request(user_id, now)
    return 0
