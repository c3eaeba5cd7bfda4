"""Entitlement engine configuration knobs.

This module is imported from base settings so all environments share a
single source of truth for resolver budgets, webhook credentials and
side-effect toggles.
"""

from __future__ import annotations

import os
from typing import Final

_TRUE_VALUES: Final[set[str]] = {"1", "true", "yes", "y", "on"}


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return str(value).strip().lower() in _TRUE_VALUES


# Resolver -----------------------------------------------------------------------------
# Budget for a single access decision; exhausted budgets fail closed.
ENTITLEMENTS_RESOLVER_BUDGET_MS: Final[int] = int(os.getenv("ENTITLEMENTS_RESOLVER_BUDGET_MS", "300"))
ENTITLEMENTS_TOUCH_ACCESS_ENABLED: Final[bool] = _env_flag("ENTITLEMENTS_TOUCH_ACCESS_ENABLED", default=True)
# Touches are published off the request thread; a full queue drops them.
ENTITLEMENTS_TOUCH_ACCESS_ASYNC: Final[bool] = _env_flag("ENTITLEMENTS_TOUCH_ACCESS_ASYNC", default=True)
ENTITLEMENTS_TOUCH_QUEUE_SIZE: Final[int] = int(os.getenv("ENTITLEMENTS_TOUCH_QUEUE_SIZE", "1000"))

# Collaborator events ------------------------------------------------------------------
ENTITLEMENTS_EVENTS_ENABLED: Final[bool] = _env_flag("ENTITLEMENTS_EVENTS_ENABLED", default=True)
ENTITLEMENTS_WEBHOOK_SECRET: Final[str] = os.getenv("ENTITLEMENTS_WEBHOOK_SECRET", "")
ENTITLEMENTS_SIGNATURE_HEADER: Final[str] = os.getenv("ENTITLEMENTS_SIGNATURE_HEADER", "HTTP_X_SIGNATURE")
ENTITLEMENTS_REQUEST_ID_HEADER: Final[str] = os.getenv("ENTITLEMENTS_REQUEST_ID_HEADER", "HTTP_X_REQUEST_ID")

# Fan-out ------------------------------------------------------------------------------
ENTITLEMENTS_SEND_PURCHASE_EMAILS: Final[bool] = _env_flag("ENTITLEMENTS_SEND_PURCHASE_EMAILS", default=True)
ENTITLEMENTS_DEFAULT_CURRENCY: Final[str] = os.getenv("ENTITLEMENTS_DEFAULT_CURRENCY", "USD")

# Observability ------------------------------------------------------------------------
ENTITLEMENTS_METRICS_NAMESPACE: Final[str] = os.getenv("ENTITLEMENTS_METRICS_NAMESPACE", "entitlements")

__all__ = [
    "ENTITLEMENTS_RESOLVER_BUDGET_MS",
    "ENTITLEMENTS_TOUCH_ACCESS_ENABLED",
    "ENTITLEMENTS_TOUCH_ACCESS_ASYNC",
    "ENTITLEMENTS_TOUCH_QUEUE_SIZE",
    "ENTITLEMENTS_EVENTS_ENABLED",
    "ENTITLEMENTS_WEBHOOK_SECRET",
    "ENTITLEMENTS_SIGNATURE_HEADER",
    "ENTITLEMENTS_REQUEST_ID_HEADER",
    "ENTITLEMENTS_SEND_PURCHASE_EMAILS",
    "ENTITLEMENTS_DEFAULT_CURRENCY",
    "ENTITLEMENTS_METRICS_NAMESPACE",
]
