"""Classification of provider failures for backoff decisions."""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any

_RATE_LIMIT_RE = re.compile(r"\b429\b|RESOURCE_EXHAUSTED|rate[ _-]?limit|too many requests", re.IGNORECASE)
_RATE_LIMIT_STATUSES = {"429", "RESOURCE_EXHAUSTED", "TOO_MANY_REQUESTS"}


class FailureKind(Enum):
    RATE_LIMIT = "rate_limit"
    GENERIC = "generic"


def classify_failure(error: BaseException) -> FailureKind:
    for exc in _exception_chain(error):
        if _has_rate_limit_status(exc):
            return FailureKind.RATE_LIMIT
        if any(_RATE_LIMIT_RE.search(text) for text in _serialized_forms(exc)):
            return FailureKind.RATE_LIMIT
    return FailureKind.GENERIC


def is_rate_limited(error: BaseException) -> bool:
    return classify_failure(error) is FailureKind.RATE_LIMIT


def describe_failure(error: BaseException) -> str:
    message = str(error).strip()
    name = type(error).__name__
    return f"{name}: {message}" if message else name


def _exception_chain(error: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = error
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def _has_rate_limit_status(exc: BaseException) -> bool:
    for attr in ("code", "status", "status_code"):
        value = getattr(exc, attr, None)
        if value is None:
            continue
        if str(value).strip().upper() in _RATE_LIMIT_STATUSES:
            return True
    return False


def _serialized_forms(exc: BaseException) -> list[str]:
    forms = [str(exc), repr(exc)]
    for payload in (exc.args, getattr(exc, "details", None), getattr(exc, "response_json", None)):
        if payload:
            forms.append(_dump(payload))
    return forms


def _dump(payload: Any) -> str:
    try:
        return json.dumps(payload, default=str)
    except (TypeError, ValueError):
        return str(payload)
