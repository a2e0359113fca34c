"""
Maps a raw provider error message to quota / rate-limit / generic failure.
"""

import re

from .models import ClassifiedFailure

_QUOTA_MARKERS = ("quota", "insufficient", "credit", "billing")
_RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429")
_RETRY_AFTER_RE = re.compile(r"retry[- ]?after[: ]+([0-9]+)", re.IGNORECASE)


def classify_error(provider_id: str, message: str) -> ClassifiedFailure:
    lower = (message or "").lower()
    is_quota = any(marker in lower for marker in _QUOTA_MARKERS)
    is_rate = any(marker in lower for marker in _RATE_LIMIT_MARKERS)

    match = _RETRY_AFTER_RE.search(lower)
    retry_after = int(match.group(1)) if match else None

    if is_quota:
        code = "quota_exhausted"
    elif is_rate:
        code = "rate_limited"
    else:
        code = "generic_error"

    return ClassifiedFailure(
        is_quota_exhaustion=is_quota,
        is_rate_limited=is_rate,
        retry_after_seconds=retry_after,
        normalized_code=f"{provider_id}:{code}",
    )
