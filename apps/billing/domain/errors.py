from __future__ import annotations

from typing import Optional


class BillingDomainError(Exception):
    """Base error for grant ledger rules."""


class InvalidTransition(BillingDomainError):
    """A grant status change the status machine refuses (e.g. refunding a pending grant)."""

    def __init__(self, current: str, event: str, *, grant_id: Optional[int] = None) -> None:
        target = f"grant {grant_id}" if grant_id is not None else "grant"
        super().__init__(f"Cannot apply '{event}' to {target} in status '{current}'")
        self.current = current
        self.event = event
        self.grant_id = grant_id
