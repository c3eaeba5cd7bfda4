# apps/content/access.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, FrozenSet, Optional

from django.conf import settings
from django.db import DatabaseError

from apps.billing.metrics import record_access_decision
from apps.billing.models import Grant, GrantRoute
from apps.billing.services.ledger import GrantLedger, enqueue_touch_access, get_grant_ledger
from apps.catalog.capabilities import AccessCapabilities
from apps.catalog.refs import ContentKind, ContentRef, load_content, storefront_id_of, storefront_pk
from apps.common.errors import InvalidInput, NotFoundError, log_integrity_warning
from apps.content.models import Chapter
from apps.memberships.models import Subscription
from apps.memberships.services.index import unlocks

log = logging.getLogger("entitlements.resolver")

_TOUCHED_ROUTES = (GrantRoute.PURCHASE, GrantRoute.BUNDLE, GrantRoute.SUBSCRIPTION)


@dataclass(frozen=True)
class AccessDecision:
    has_access: bool
    route: Optional[str] = None
    grant: Optional[Grant] = None
    reason: str = ""

    @property
    def status(self) -> int:
        """HTTP status a consumption surface should render for this decision."""
        if self.has_access:
            return 200
        if self.reason == "not_found":
            return 404
        if self.reason in ("timeout", "unavailable"):
            return 503
        return 403


class _BudgetExhausted(Exception):
    pass


class _Deadline:
    def __init__(self, budget_ms: int) -> None:
        self.budget = max(0, int(budget_ms)) / 1000.0
        self.started = time.monotonic()

    def check(self, step: str) -> None:
        if time.monotonic() - self.started >= self.budget:
            raise _BudgetExhausted(step)


class EntitlementResolver:
    """
    Decides whether a user may read a piece of content, and by which route.
    First match wins:
      1. free chapter (no ledger read, anonymous allowed)
      2. completed purchase of the item (chapters: of their course)
      3. completed purchase of a bundle containing the item
      4. a live subscription on the storefront whose plan unlocks the item
      5. admin capability passed by the caller, or a standing admin grant
      6. denied
    Nothing is cached between calls; refunds, lapses and plan edits apply on
    the next call. Budget exhaustion and database errors fail closed.
    """

    def __init__(self, ledger: GrantLedger | None = None, *, budget_ms: int | None = None) -> None:
        self.ledger = ledger or get_grant_ledger()
        self.budget_ms = budget_ms

    def resolve(
        self,
        user: Any,
        storefront: Any,
        content_ref: ContentRef,
        *,
        capabilities: AccessCapabilities | None = None,
    ) -> AccessDecision:
        if not isinstance(content_ref, ContentRef):
            raise InvalidInput(f"Expected a ContentRef, got {type(content_ref).__name__}")
        storefront_id = storefront_pk(storefront)
        capabilities = capabilities or AccessCapabilities.none()
        budget = self.budget_ms if self.budget_ms is not None else settings.ENTITLEMENTS_RESOLVER_BUDGET_MS
        deadline = _Deadline(budget)
        context = {
            "user_id": getattr(user, "pk", None),
            "storefront_id": storefront_id,
            "content": str(content_ref),
        }

        try:
            decision = self._resolve(user, storefront_id, content_ref, capabilities, deadline)
        except NotFoundError as exc:
            log.info("access_not_found", extra={**context, "error": str(exc)})
            decision = AccessDecision(False, reason="not_found")
        except _BudgetExhausted as exc:
            log.warning("access_budget_exhausted", extra={**context, "step": str(exc), "budget_ms": budget})
            decision = AccessDecision(False, reason="timeout")
        except DatabaseError:
            log.exception("access_store_unavailable", extra=context)
            decision = AccessDecision(False, reason="unavailable")

        record_access_decision(decision.route, "granted" if decision.has_access else decision.reason or "denied")
        log.debug(
            "access_decision",
            extra={**context, "has_access": decision.has_access, "route": decision.route, "reason": decision.reason},
        )
        if decision.grant is not None and decision.route in _TOUCHED_ROUTES:
            enqueue_touch_access(decision.grant.pk)
        return decision

    def _resolve(
        self,
        user: Any,
        storefront_id: int,
        ref: ContentRef,
        capabilities: AccessCapabilities,
        deadline: _Deadline,
    ) -> AccessDecision:
        content = load_content(ref)
        if storefront_id_of(content) != storefront_id:
            raise NotFoundError(ref.kind.label, ref.id)

        # 1. free chapter
        target = ref
        if ref.kind == ContentKind.CHAPTER:
            if content.is_free and content.in_published_tree:
                return AccessDecision(True, route=GrantRoute.ADMIN_OVERRIDE, reason="free_chapter")
            target = ContentRef.course(content.lesson.module.course_id)

        if user is None or not getattr(user, "is_authenticated", False):
            raise InvalidInput("An authenticated user is required for gated content")

        # 2. direct purchase
        deadline.check("purchase")
        grant = self.ledger.completed_purchase(user, target)
        if grant is not None:
            return self._granted(GrantRoute.PURCHASE, grant, "purchase")

        # 3. bundle membership
        deadline.check("bundle")
        grant = self.ledger.bundle_grants_for(user, target).first()
        if grant is not None:
            return self._granted(GrantRoute.BUNDLE, grant, "bundle")

        # 4. subscription
        deadline.check("subscription")
        subscriptions = list(
            Subscription.objects.not_canceled()
            .select_related("plan")
            .filter(user=user, storefront_id=storefront_id)
            .order_by("created_at", "id")
        )
        if len(subscriptions) > 1:
            log_integrity_warning(
                log,
                "multiple_open_subscriptions",
                user_id=user.pk,
                storefront_id=storefront_id,
                subscription_ids=[s.pk for s in subscriptions],
            )
        for subscription in subscriptions:
            deadline.check("subscription")
            if unlocks(subscription, target):
                grant = (
                    Grant.objects.completed()
                    .filter(route=GrantRoute.SUBSCRIPTION, subscription=subscription)
                    .order_by("-created_at", "-id")
                    .first()
                )
                return self._granted(GrantRoute.SUBSCRIPTION, grant, "subscription")

        # 5. admin override
        if capabilities.is_admin_for(storefront_id):
            return AccessDecision(True, route=GrantRoute.ADMIN_OVERRIDE, reason="admin_capability")
        deadline.check("admin_override")
        grant = self.ledger.standing_admin_grant(user, target)
        if grant is not None:
            return AccessDecision(True, route=GrantRoute.ADMIN_OVERRIDE, grant=grant, reason="admin_grant")

        return AccessDecision(False, reason="no_entitlement")

    def _granted(self, route: str, grant: Grant | None, reason: str) -> AccessDecision:
        return AccessDecision(True, route=route, grant=grant, reason=reason)

    def accessible_chapter_ids(
        self,
        user: Any,
        storefront: Any,
        course: Any,
        *,
        capabilities: AccessCapabilities | None = None,
    ) -> FrozenSet[int]:
        """Published chapter ids of ``course`` the user can open."""
        course_id = getattr(course, "pk", course)
        chapters = Chapter.objects.for_course(course_id).in_published_tree()
        full_access = False
        if user is not None and getattr(user, "is_authenticated", False):
            decision = self.resolve(user, storefront, ContentRef.course(course_id), capabilities=capabilities)
            full_access = decision.has_access
        if not full_access:
            chapters = chapters.filter(is_free=True)
        return frozenset(chapters.values_list("id", flat=True))


def get_resolver() -> EntitlementResolver:
    return EntitlementResolver()


def resolve(
    user: Any,
    storefront: Any,
    content_ref: ContentRef,
    *,
    capabilities: AccessCapabilities | None = None,
) -> AccessDecision:
    return get_resolver().resolve(user, storefront, content_ref, capabilities=capabilities)
