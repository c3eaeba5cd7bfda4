from __future__ import annotations

from .index import unlocked_content_ids, unlocks
from .lifecycle import SubscriptionService, get_subscription_service

__all__ = [
    "SubscriptionService",
    "get_subscription_service",
    "unlocked_content_ids",
    "unlocks",
]
