from __future__ import annotations

from enum import Enum
from typing import Dict, Mapping, Set

from apps.memberships.models import SubscriptionStatus

from .errors import InvalidTransition


class SubscriptionEvent(str, Enum):
    """Billing events that can mutate a subscription."""

    ACTIVATE = "activate"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_RECOVERED = "payment_recovered"
    CANCEL = "cancel"


_TRANSITIONS: Mapping[SubscriptionStatus, Dict[SubscriptionEvent, SubscriptionStatus]] = {
    SubscriptionStatus.TRIALING: {
        SubscriptionEvent.ACTIVATE: SubscriptionStatus.ACTIVE,
        SubscriptionEvent.PAYMENT_FAILED: SubscriptionStatus.PAST_DUE,
        SubscriptionEvent.CANCEL: SubscriptionStatus.CANCELED,
    },
    SubscriptionStatus.ACTIVE: {
        SubscriptionEvent.PAYMENT_FAILED: SubscriptionStatus.PAST_DUE,
        SubscriptionEvent.CANCEL: SubscriptionStatus.CANCELED,
    },
    SubscriptionStatus.PAST_DUE: {
        SubscriptionEvent.PAYMENT_RECOVERED: SubscriptionStatus.ACTIVE,
        SubscriptionEvent.ACTIVATE: SubscriptionStatus.ACTIVE,
        SubscriptionEvent.CANCEL: SubscriptionStatus.CANCELED,
    },
    SubscriptionStatus.CANCELED: {},
}


_IDEMPOTENT: Mapping[SubscriptionEvent, Set[SubscriptionStatus]] = {
    SubscriptionEvent.ACTIVATE: {SubscriptionStatus.ACTIVE},
    SubscriptionEvent.PAYMENT_RECOVERED: {SubscriptionStatus.ACTIVE},
    SubscriptionEvent.PAYMENT_FAILED: {SubscriptionStatus.PAST_DUE},
    SubscriptionEvent.CANCEL: {SubscriptionStatus.CANCELED},
}


def is_allowed(current: SubscriptionStatus, event: SubscriptionEvent) -> bool:
    if event in _IDEMPOTENT and current in _IDEMPOTENT[event]:
        return True
    return event in _TRANSITIONS.get(current, {})


def transition(current: SubscriptionStatus, event: SubscriptionEvent) -> SubscriptionStatus:
    """Return the next state or raise InvalidTransition."""

    current = SubscriptionStatus(current)
    if event in _IDEMPOTENT and current in _IDEMPOTENT[event]:
        return current

    try:
        return _TRANSITIONS[current][event]
    except KeyError as exc:
        raise InvalidTransition(current=current, event=event.value) from exc


def allowed_events(current: SubscriptionStatus) -> Set[SubscriptionEvent]:
    events = set(_TRANSITIONS.get(current, {}).keys())
    for event, states in _IDEMPOTENT.items():
        if current in states:
            events.add(event)
    return events


def event_towards(current: SubscriptionStatus, target: SubscriptionStatus) -> SubscriptionEvent:
    """Pick the event that moves ``current`` to ``target``.

    Used by collaborators that report the desired status rather than the
    billing event that caused it.
    """

    current = SubscriptionStatus(current)
    target = SubscriptionStatus(target)
    if current == target:
        for event, states in _IDEMPOTENT.items():
            if current in states:
                return event
    for event, next_state in _TRANSITIONS.get(current, {}).items():
        if next_state == target:
            return event
    raise InvalidTransition(current=current, event=f"to:{target.value}")
