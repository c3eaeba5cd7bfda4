from __future__ import annotations

from .customer import CustomerLifecycleService, CustomerStats, get_customer_service
from .ledger import GrantLedger, get_grant_ledger

__all__ = [
    "CustomerLifecycleService",
    "CustomerStats",
    "GrantLedger",
    "get_customer_service",
    "get_grant_ledger",
]
