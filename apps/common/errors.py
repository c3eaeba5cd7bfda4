"""Error taxonomy shared by the entitlement engine apps."""
from __future__ import annotations

import logging
from typing import Any, Mapping


class EntitlementError(Exception):
    """Base error for the entitlement engine."""


class InvalidInput(EntitlementError):
    """Malformed ids or missing identity; surfaced to callers as a hard error."""


class NotFoundError(EntitlementError):
    """A content reference or record does not exist."""

    def __init__(self, kind: str, identifier: Any) -> None:
        super().__init__(f"{kind} '{identifier}' not found")
        self.kind = kind
        self.identifier = identifier


class ConflictError(EntitlementError):
    """A unique write lost a race. Resolved internally, never surfaced."""


class DownstreamSideEffectFailure(EntitlementError):
    """A fire-and-forget side effect failed (customer sync, access telemetry)."""


class IntegrityWarning(Warning):
    """Data anomaly that is logged while resolution proceeds with a fallback."""


def log_integrity_warning(logger: logging.Logger, event: str, **context: Any) -> None:
    extra: Mapping[str, Any] = {"integrity_warning": IntegrityWarning.__name__, **context}
    logger.warning(event, extra=dict(extra))


__all__ = [
    "ConflictError",
    "DownstreamSideEffectFailure",
    "EntitlementError",
    "IntegrityWarning",
    "InvalidInput",
    "NotFoundError",
    "log_integrity_warning",
]
