from __future__ import annotations

import json
import math
import queue
import re
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Optional

MAJOR_KEYS = ("student_major", "major")
CREDIT_KEYS = ("total_credits_completed", "totalCredits", "total_credits")

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")


@dataclass(frozen=True)
class FallbackResult:
    major: str | None = None
    total_credits: float | None = None


FallbackFn = Callable[[str], object]


def _strip_fence(s: str) -> str:
    s = s.strip()
    s = _FENCE_OPEN.sub("", s)
    s = _FENCE_CLOSE.sub("", s)
    return s.strip()


def _first(payload: Mapping[str, object], keys: tuple[str, ...]) -> object:
    for k in keys:
        if k in payload:
            return payload[k]
    return None


def _clean_major(v: object) -> str | None:
    if not isinstance(v, str):
        return None
    v = v.strip()
    if not v or v.lower() in {"unknown", "n/a", "none", "null"}:
        return None
    return v


def _clean_credits(v: object) -> float | None:
    # bool is an int subclass; a model answering `true` is not a credit count
    if isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        f = float(v)
    elif isinstance(v, str):
        try:
            f = float(v.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(f) or f < 0:
        return None
    return f


def coerce_fallback_payload(payload: object) -> FallbackResult:
    """
    Turn whatever the collaborator handed back into a FallbackResult.

    Accepts a FallbackResult, a mapping, a JSON object string (bare or inside a
    ``` / ```json fence) or None. Course lists in the payload are ignored.
    Raises ValueError / json.JSONDecodeError for text that is not a JSON object.
    """
    if payload is None:
        return FallbackResult()
    if isinstance(payload, FallbackResult):
        return FallbackResult(_clean_major(payload.major), _clean_credits(payload.total_credits))
    if isinstance(payload, (str, bytes)):
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        payload = json.loads(_strip_fence(text))
    if not isinstance(payload, Mapping):
        raise ValueError(f"fallback payload is not an object: {type(payload).__name__}")
    return FallbackResult(
        major=_clean_major(_first(payload, MAJOR_KEYS)),
        total_credits=_clean_credits(_first(payload, CREDIT_KEYS)),
    )


def call_fallback(
    fallback: FallbackFn, snippet: str, timeout: Optional[float] = None
) -> FallbackResult:
    """Invoke the collaborator once. Errors and timeouts propagate to the caller."""
    if timeout is None:
        return coerce_fallback_payload(fallback(snippet))

    box: queue.Queue = queue.Queue(maxsize=1)

    def run() -> None:
        try:
            box.put((True, fallback(snippet)))
        except Exception as e:
            box.put((False, e))

    # daemon, so an overrunning collaborator never holds the process open
    threading.Thread(target=run, name="transcript-fallback", daemon=True).start()
    try:
        ok, value = box.get(timeout=timeout)
    except queue.Empty:
        raise TimeoutError(f"fallback did not answer within {timeout}s") from None
    if not ok:
        raise value
    return coerce_fallback_payload(value)
