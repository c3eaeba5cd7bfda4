from __future__ import annotations

from enum import Enum
from typing import Dict, Mapping, Optional, Set

from apps.billing.models import GrantStatus

from .errors import InvalidTransition


class GrantEvent(str, Enum):
    """Events that can mutate a grant's status."""

    REFUND_SUCCEEDED = "refund_succeeded"


# Pending grants are never confirmed in place; a paid purchase is recorded as a new completed grant.
_TRANSITIONS: Mapping[GrantStatus, Dict[GrantEvent, GrantStatus]] = {
    GrantStatus.PENDING: {},
    GrantStatus.COMPLETED: {
        GrantEvent.REFUND_SUCCEEDED: GrantStatus.REFUNDED,
    },
    GrantStatus.REFUNDED: {},
}


_IDEMPOTENT: Mapping[GrantEvent, Set[GrantStatus]] = {
    GrantEvent.REFUND_SUCCEEDED: {GrantStatus.REFUNDED},
}


def is_allowed(current: GrantStatus, event: GrantEvent) -> bool:
    """Return True if the transition is defined."""

    if event in _IDEMPOTENT and current in _IDEMPOTENT[event]:
        return True
    return event in _TRANSITIONS.get(current, {})


def transition(current: GrantStatus, event: GrantEvent, *, grant_id: Optional[int] = None) -> GrantStatus:
    """Return the next state or raise InvalidTransition."""

    current = GrantStatus(current)
    if event in _IDEMPOTENT and current in _IDEMPOTENT[event]:
        return current

    try:
        return _TRANSITIONS[current][event]
    except KeyError as exc:
        raise InvalidTransition(current=current, event=event.value, grant_id=grant_id) from exc


def allowed_events(current: GrantStatus) -> Set[GrantEvent]:
    """Possible events from current state."""

    events = set(_TRANSITIONS.get(current, {}).keys())
    for event, states in _IDEMPOTENT.items():
        if current in states:
            events.add(event)
    return events
