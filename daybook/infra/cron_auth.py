from __future__ import annotations

import hmac
from typing import Mapping

UNAUTHORIZED_BODY = {"error": "Unauthorized"}


def _matches(candidate: str | None, expected: str) -> bool:
    if not candidate:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


def is_cron_authorized(headers: Mapping[str, str], secret: str | None) -> bool:
    """Bearer token first, then the legacy ``X-Cron-Secret`` header.

    Without a configured secret every request is rejected.
    """
    if not secret:
        return False
    lowered = {key.lower(): value for key, value in headers.items()}
    if _matches(lowered.get("authorization"), f"Bearer {secret}"):
        return True
    return _matches(lowered.get("x-cron-secret"), secret)
