from __future__ import annotations

import logging
import re
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

FALLBACK_DIGEST_TIME = (9, 0)

_DIGEST_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass(frozen=True)
class DigestMatch:
    fire: bool
    matched_exactly: bool


def parse_hhmm(value: str | None) -> tuple[int, int] | None:
    if not isinstance(value, str):
        return None
    match = _DIGEST_TIME_RE.match(value)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def parse_digest_time(raw: str | None, *, default: str = "09:00") -> tuple[int, int]:
    parsed = parse_hhmm(raw)
    if parsed is not None:
        return parsed
    fallback = parse_hhmm(default)
    if fallback is not None:
        if raw:
            LOGGER.debug("Digest time %r is malformed, using default %s", raw, default)
        return fallback
    LOGGER.warning("Default digest time %r is malformed, using 09:00", default)
    return FALLBACK_DIGEST_TIME


def should_fire_digest(
    local_hour: int,
    local_minute: int,
    digest_time: str | None,
    tolerance_minutes: int,
    *,
    default: str = "09:00",
) -> DigestMatch:
    """Hour-level decision for an hourly tick.

    The tick owns the whole hour: a digest is sent whenever the local hour
    equals the configured hour. ``matched_exactly`` only tells whether the tick
    also landed within ``tolerance_minutes`` of the configured minute.
    """
    digest_hour, digest_minute = parse_digest_time(digest_time, default=default)
    fire = local_hour == digest_hour
    matched_exactly = fire and abs(local_minute - digest_minute) <= tolerance_minutes
    return DigestMatch(fire=fire, matched_exactly=matched_exactly)
