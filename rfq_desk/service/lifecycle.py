"""
RFQ status transition table and the single function that evaluates it.

decide() never raises: an invalid combination is an expected outcome and
comes back as a Denied value. RFQService turns Denied into an
InvalidTransitionError at its boundary.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from shared.models_db import RFQStatus


class RFQEvent(str, Enum):
    QUOTE = "quote"
    ACCEPT = "accept"
    REJECT = "reject"
    EXPIRE = "expire"


# The status each event asks for, used to report what was requested when denied
EVENT_TARGETS: Dict[RFQEvent, RFQStatus] = {
    RFQEvent.QUOTE: RFQStatus.QUOTED,
    RFQEvent.ACCEPT: RFQStatus.ACCEPTED,
    RFQEvent.REJECT: RFQStatus.REJECTED,
    RFQEvent.EXPIRE: RFQStatus.EXPIRED,
}

TRANSITIONS: Dict[Tuple[RFQStatus, RFQEvent], RFQStatus] = {
    (RFQStatus.PENDING, RFQEvent.QUOTE): RFQStatus.QUOTED,
    (RFQStatus.PENDING, RFQEvent.EXPIRE): RFQStatus.EXPIRED,
    (RFQStatus.QUOTED, RFQEvent.ACCEPT): RFQStatus.ACCEPTED,
    (RFQStatus.QUOTED, RFQEvent.REJECT): RFQStatus.REJECTED,
    (RFQStatus.QUOTED, RFQEvent.EXPIRE): RFQStatus.EXPIRED,
}

TERMINAL_STATES = frozenset({RFQStatus.ACCEPTED, RFQStatus.REJECTED, RFQStatus.EXPIRED})

# Statuses the expiry sweep looks at
OPEN_STATES = frozenset({RFQStatus.PENDING, RFQStatus.QUOTED})

# Events that may only happen while the RFQ is still within its validity window
_REQUIRES_UNEXPIRED = frozenset({RFQEvent.QUOTE, RFQEvent.ACCEPT})


@dataclass(frozen=True)
class Allowed:
    current: RFQStatus
    target: RFQStatus


@dataclass(frozen=True)
class Denied:
    current: RFQStatus
    requested: RFQStatus
    reason: str


Outcome = Union[Allowed, Denied]


def is_expired(expires_at: Optional[datetime], now: datetime) -> bool:
    return expires_at is not None and now >= expires_at


def decide(current: RFQStatus, event: RFQEvent, now: datetime, expires_at: Optional[datetime]) -> Outcome:
    requested = EVENT_TARGETS[event]

    if current in TERMINAL_STATES:
        return Denied(current, requested, f"{current.value} is a terminal state")

    target = TRANSITIONS.get((current, event))
    if target is None:
        return Denied(current, requested, f"'{event.value}' is not allowed while {current.value}")

    if event in _REQUIRES_UNEXPIRED and is_expired(expires_at, now):
        return Denied(current, requested, f"RFQ expired at {expires_at.isoformat()}")

    if event is RFQEvent.EXPIRE and not is_expired(expires_at, now):
        if expires_at is None:
            return Denied(current, requested, "RFQ has no expiry")
        return Denied(current, requested, f"RFQ is not due to expire until {expires_at.isoformat()}")

    return Allowed(current, target)


def next_timestamp(previous: datetime, now: datetime) -> datetime:
    """updated_at for a mutation: now, or one microsecond past previous if the clock has not moved."""
    if now > previous:
        return now
    return previous + timedelta(microseconds=1)
