from __future__ import annotations

import logging
from typing import Any, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F, QuerySet
from django.utils import timezone

from apps.billing.domain import state
from apps.billing.metrics import record_grant, record_side_effect_failure
from apps.billing.models import Enrollment, Grant, GrantRoute, GrantStatus
from apps.billing.services.telemetry import get_touch_publisher
from apps.catalog.capabilities import AccessCapabilities
from apps.catalog.models import Bundle
from apps.catalog.refs import ContentKind, ContentRef, load_content, storefront_id_of, storefront_pk
from apps.common.errors import ConflictError, InvalidInput, NotFoundError
from apps.memberships.domain.errors import PlanRetired
from apps.memberships.models import Subscription

log = logging.getLogger("billing.ledger")

_SELLABLE_KINDS = (ContentKind.COURSE, ContentKind.PRODUCT, ContentKind.BUNDLE)


class GrantLedger:
    """Append-only record of access-granting events.

    The partial unique constraints on ``Grant`` are the serialization point:
    a second writer for the same completed purchase gets the first writer's
    row back instead of an error.
    """

    # -- writes -------------------------------------------------------------------------

    def record_purchase_grant(
        self,
        user: Any,
        content_ref: ContentRef,
        storefront: Any,
        amount: int,
        external_txn_id: str,
        *,
        currency: Optional[str] = None,
    ) -> Grant:
        _require_user(user)
        storefront_id = storefront_pk(storefront)
        amount = _validate_amount(amount)
        self._ensure_sellable(content_ref, storefront_id)

        grant, created = self._record_unique(
            GrantRoute.PURCHASE,
            user=user,
            content_ref=content_ref,
            storefront_id=storefront_id,
            amount=amount,
            currency=currency,
            external_txn_id=external_txn_id,
        )
        if created:
            transaction.on_commit(lambda: _enqueue_customer_sync(grant.pk))
            transaction.on_commit(lambda: _enqueue_purchase_notification(grant.pk))
        return grant

    def record_admin_grant(self, user: Any, content_ref: ContentRef, storefront: Any, *, granted_by: Any) -> Grant:
        """Zero-amount comp access issued by the storefront owner."""
        _require_user(user)
        storefront_id = storefront_pk(storefront)
        if not AccessCapabilities.for_owner(granted_by).is_admin_for(storefront_id):
            raise InvalidInput("Only the storefront owner can issue admin grants")
        self._ensure_sellable(content_ref, storefront_id)

        grant, created = self._record_unique(
            GrantRoute.ADMIN_OVERRIDE,
            user=user,
            content_ref=content_ref,
            storefront_id=storefront_id,
            amount=0,
            currency=None,
            external_txn_id="",
            granted_by=granted_by,
        )
        if created:
            transaction.on_commit(lambda: _enqueue_customer_sync(grant.pk))
        return grant

    def record_subscription_grant(self, subscription: Subscription, *, amount: int, external_txn_id: str = "") -> Grant:
        """Record the payment for one billing period of a subscription."""
        amount = _validate_amount(amount)
        subscription_id = getattr(subscription, "pk", subscription)
        with transaction.atomic():
            subscription = (
                Subscription.objects.select_for_update()
                .select_related("plan", "user")
                .filter(pk=subscription_id)
                .first()
            )
            if subscription is None:
                raise NotFoundError("Subscription", subscription_id)
            plan = subscription.plan
            if plan is None or not plan.is_active or not subscription.is_live:
                record_grant(GrantRoute.SUBSCRIPTION, "refused")
                log.warning(
                    "subscription_grant_refused",
                    extra={
                        "subscription_id": subscription.pk,
                        "plan_id": subscription.plan_id,
                        "status": subscription.status,
                    },
                )
                raise PlanRetired(subscription.plan_id)

            if external_txn_id:
                existing = Grant.objects.filter(
                    route=GrantRoute.SUBSCRIPTION,
                    subscription=subscription,
                    external_txn_id=external_txn_id,
                ).first()
                if existing is not None:
                    record_grant(GrantRoute.SUBSCRIPTION, "existing")
                    return existing

            grant = Grant.objects.create(
                user=subscription.user,
                storefront_id=subscription.storefront_id,
                route=GrantRoute.SUBSCRIPTION,
                amount=amount,
                currency=plan.currency or settings.ENTITLEMENTS_DEFAULT_CURRENCY,
                status=GrantStatus.COMPLETED,
                external_txn_id=external_txn_id or "",
                subscription=subscription,
            )
        transaction.on_commit(lambda: _enqueue_customer_sync(grant.pk))
        record_grant(GrantRoute.SUBSCRIPTION, "created")
        log.info(
            "subscription_grant_recorded",
            extra={"grant_id": grant.pk, "subscription_id": subscription.pk, "amount": amount},
        )
        return grant

    def record_refund(self, grant_id: int) -> Grant:
        """Flip a completed grant to refunded.

        The customer record is left alone: refunds never downgrade a buyer.
        """
        with transaction.atomic():
            grant = Grant.objects.select_for_update().filter(pk=grant_id).first()
            if grant is None:
                raise NotFoundError("Grant", grant_id)
            next_status = state.transition(grant.status, state.GrantEvent.REFUND_SUCCEEDED, grant_id=grant.pk)
            if next_status == grant.status:
                log.debug("grant_refund_idempotent", extra={"grant_id": grant.pk})
                return grant
            grant.status = next_status
            grant.refunded_at = timezone.now()
            grant.save(update_fields=["status", "refunded_at", "updated_at"])
            Enrollment.objects.filter(grant=grant).delete()

        record_grant(grant.route, "refunded")
        log.info("grant_refunded", extra={"grant_id": grant.pk, "user_id": grant.user_id, "route": grant.route})
        return grant

    def touch_access(self, grant_id: int) -> None:
        """Best-effort access telemetry; never raises."""
        try:
            Grant.objects.filter(pk=grant_id).update(
                access_count=F("access_count") + 1,
                last_accessed_at=timezone.now(),
            )
        except Exception:  # pragma: no cover
            record_side_effect_failure("touch_access")
            log.exception("touch_access_failed", extra={"grant_id": grant_id})

    # -- reads --------------------------------------------------------------------------

    def completed_purchase(self, user: Any, ref: ContentRef) -> Optional[Grant]:
        return Grant.objects.completed().filter(user=user, route=GrantRoute.PURCHASE).for_ref(ref).first()

    def standing_admin_grant(self, user: Any, ref: ContentRef) -> Optional[Grant]:
        return Grant.objects.completed().filter(user=user, route=GrantRoute.ADMIN_OVERRIDE).for_ref(ref).first()

    def bundle_grants_for(self, user: Any, ref: ContentRef) -> QuerySet:
        """Completed grants on any bundle that lists ``ref`` as a member."""
        if ref.kind == ContentKind.COURSE:
            bundle_ids = Bundle.objects.filter(courses__id=ref.id).values("id")
        elif ref.kind == ContentKind.PRODUCT:
            bundle_ids = Bundle.objects.filter(products__id=ref.id).values("id")
        else:
            return Grant.objects.none()
        return (
            Grant.objects.completed()
            .filter(
                user=user,
                route__in=(GrantRoute.PURCHASE, GrantRoute.BUNDLE),
                content_kind=ContentKind.BUNDLE,
                content_id__in=bundle_ids,
            )
            .order_by("created_at", "id")
        )

    def grants_for_user(self, user: Any, storefront: Any = None) -> QuerySet:
        qs = Grant.objects.filter(user=user)
        if storefront is not None:
            qs = qs.filter(storefront_id=storefront_pk(storefront))
        return qs.order_by("-created_at", "-id")

    def find_by_external_txn(self, external_txn_id: str) -> Optional[Grant]:
        if not external_txn_id:
            return None
        return Grant.objects.filter(external_txn_id=external_txn_id).order_by("-created_at", "-id").first()

    # -- internals ----------------------------------------------------------------------

    def _ensure_sellable(self, ref: ContentRef, storefront_id: int) -> None:
        if ref.kind not in _SELLABLE_KINDS:
            raise InvalidInput(f"{ref.kind.value} references cannot be granted directly")
        obj = load_content(ref)
        if storefront_id_of(obj) != storefront_id:
            raise NotFoundError(ref.kind.label, ref.id)

    def _existing(self, route: str, user: Any, ref: ContentRef) -> Optional[Grant]:
        if route == GrantRoute.PURCHASE:
            return self.completed_purchase(user, ref)
        return self.standing_admin_grant(user, ref)

    def _record_unique(
        self,
        route: str,
        *,
        user: Any,
        content_ref: ContentRef,
        storefront_id: int,
        amount: int,
        currency: Optional[str],
        external_txn_id: str,
        granted_by: Any = None,
    ) -> tuple[Grant, bool]:
        context = {
            "user_id": user.pk,
            "content": str(content_ref),
            "storefront_id": storefront_id,
            "route": route,
            "external_txn_id": external_txn_id or "",
        }
        existing = self._existing(route, user, content_ref)
        if existing is not None:
            record_grant(route, "existing")
            log.info("grant_existing", extra={**context, "grant_id": existing.pk})
            return existing, False

        try:
            grant = self._insert(
                route,
                user=user,
                content_ref=content_ref,
                storefront_id=storefront_id,
                amount=amount,
                currency=currency,
                external_txn_id=external_txn_id,
                granted_by=granted_by,
            )
        except ConflictError:
            winner = self._existing(route, user, content_ref)
            if winner is None:
                raise
            record_grant(route, "existing")
            log.info("grant_conflict_resolved", extra={**context, "grant_id": winner.pk})
            return winner, False

        record_grant(route, "created")
        log.info("grant_recorded", extra={**context, "grant_id": grant.pk, "amount": amount})
        return grant, True

    def _insert(
        self,
        route: str,
        *,
        user: Any,
        content_ref: ContentRef,
        storefront_id: int,
        amount: int,
        currency: Optional[str],
        external_txn_id: str,
        granted_by: Any,
    ) -> Grant:
        try:
            with transaction.atomic():
                grant = Grant.objects.create(
                    user=user,
                    storefront_id=storefront_id,
                    content_kind=content_ref.kind,
                    content_id=content_ref.id,
                    route=route,
                    amount=amount,
                    currency=(currency or settings.ENTITLEMENTS_DEFAULT_CURRENCY).upper(),
                    status=GrantStatus.COMPLETED,
                    external_txn_id=external_txn_id or "",
                    granted_by=granted_by,
                )
                if content_ref.kind == ContentKind.COURSE:
                    Enrollment.objects.get_or_create(
                        user=user,
                        course_id=content_ref.id,
                        defaults={"grant": grant},
                    )
        except IntegrityError as exc:
            raise ConflictError(f"{route} grant for {content_ref} already recorded") from exc
        return grant


def get_grant_ledger() -> GrantLedger:
    return GrantLedger()


def _require_user(user: Any) -> None:
    if user is None or getattr(user, "pk", None) is None:
        raise InvalidInput("A user is required")


def _validate_amount(amount: Any) -> int:
    if isinstance(amount, bool):
        raise InvalidInput(f"Invalid amount {amount!r}")
    try:
        value = int(amount)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Invalid amount {amount!r}") from exc
    if value != amount and not isinstance(amount, str):
        raise InvalidInput(f"Amounts are integer minor units, got {amount!r}")
    if value < 0:
        raise InvalidInput("Amount cannot be negative")
    return value


def _enqueue(task_name: str, grant_pk: int) -> None:
    try:
        from apps.billing import tasks  # inline import to avoid cycles

        getattr(tasks, task_name).apply_async(args=[grant_pk], retry=False)
    except Exception:  # pragma: no cover
        record_side_effect_failure(task_name)
        log.exception("side_effect_enqueue_failed", extra={"task": task_name, "grant_id": grant_pk})


def _enqueue_customer_sync(grant_pk: int) -> None:
    _enqueue("sync_customer_from_grant", grant_pk)


def _enqueue_purchase_notification(grant_pk: int) -> None:
    if not getattr(settings, "ENTITLEMENTS_SEND_PURCHASE_EMAILS", True):
        return
    _enqueue("send_purchase_notification", grant_pk)


def publish_touch_access(grant_pk: int) -> None:
    _enqueue("touch_grant_access", grant_pk)


def enqueue_touch_access(grant_pk: int) -> None:
    """Schedule access telemetry after the surrounding transaction commits.

    The broker publish happens on the touch publisher thread, so callers never
    wait on it, even in autocommit where on_commit callbacks run immediately.
    """
    if not getattr(settings, "ENTITLEMENTS_TOUCH_ACCESS_ENABLED", True):
        return
    if getattr(settings, "ENTITLEMENTS_TOUCH_ACCESS_ASYNC", True):
        dispatch = lambda: get_touch_publisher().submit(grant_pk)  # noqa: E731
    else:
        dispatch = lambda: publish_touch_access(grant_pk)  # noqa: E731
    try:
        transaction.on_commit(dispatch)
    except Exception:  # pragma: no cover
        record_side_effect_failure("touch_grant_access")
        log.exception("touch_access_schedule_failed", extra={"grant_id": grant_pk})
