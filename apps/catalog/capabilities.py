"""Caller-supplied capabilities for access checks."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, FrozenSet, Iterable

from apps.catalog.models import Storefront


@dataclass(frozen=True)
class AccessCapabilities:
    """Storefronts the caller administers.

    Built by the calling surface from the authenticated identity and passed
    explicitly to the resolver; the resolver never derives it on its own.
    """

    admin_storefront_ids: FrozenSet[int] = field(default_factory=frozenset)

    def is_admin_for(self, storefront_id: int) -> bool:
        return storefront_id in self.admin_storefront_ids

    @classmethod
    def none(cls) -> "AccessCapabilities":
        return cls()

    @classmethod
    def admin_of(cls, storefront_ids: Iterable[int]) -> "AccessCapabilities":
        return cls(admin_storefront_ids=frozenset(int(pk) for pk in storefront_ids))

    @classmethod
    def for_owner(cls, user: Any) -> "AccessCapabilities":
        if user is None or not getattr(user, "is_authenticated", False):
            return cls()
        ids = Storefront.objects.filter(owner=user).values_list("id", flat=True)
        return cls.admin_of(ids)
