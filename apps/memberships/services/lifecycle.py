from __future__ import annotations

import logging
from typing import Any

from django.db import transaction
from django.utils import timezone

from apps.common.errors import InvalidInput
from apps.memberships.domain import state
from apps.memberships.domain.errors import DuplicateSubscription, PlanRetired
from apps.memberships.models import BillingInterval, Subscription, SubscriptionPlan, SubscriptionStatus

log = logging.getLogger("memberships.lifecycle")


class SubscriptionService:
    """Writes driven by the billing collaborator and the storefront owner."""

    @transaction.atomic
    def start(
        self,
        user: Any,
        plan: SubscriptionPlan,
        *,
        status: str = SubscriptionStatus.ACTIVE,
        interval: str = BillingInterval.MONTHLY,
        external_id: str = "",
    ) -> Subscription:
        if user is None or getattr(user, "pk", None) is None:
            raise InvalidInput("A user is required to start a subscription")
        if status not in (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE):
            raise InvalidInput(f"Subscriptions cannot start in status {status!r}")
        if interval not in BillingInterval.values:
            raise InvalidInput(f"Unknown billing interval {interval!r}")

        plan = SubscriptionPlan.objects.select_for_update().get(pk=plan.pk)
        if not plan.is_active:
            raise PlanRetired(plan.pk)

        existing = (
            Subscription.objects.select_for_update()
            .not_canceled()
            .filter(user=user, storefront_id=plan.storefront_id)
            .first()
        )
        if existing is not None:
            raise DuplicateSubscription(user.pk, plan.storefront_id)

        subscription = Subscription.objects.create(
            user=user,
            plan=plan,
            storefront_id=plan.storefront_id,
            status=status,
            interval=interval,
            external_id=external_id or "",
        )
        log.info(
            "subscription_started",
            extra={"subscription_id": subscription.pk, "plan_id": plan.pk, "user_id": user.pk, "status": status},
        )
        return subscription

    @transaction.atomic
    def transition(self, subscription: Subscription, event: state.SubscriptionEvent) -> Subscription:
        subscription = Subscription.objects.select_for_update().get(pk=subscription.pk)
        previous = subscription.status
        next_status = state.transition(previous, event)
        if next_status == previous:
            log.debug(
                "subscription_transition_idempotent",
                extra={"subscription_id": subscription.pk, "status": previous, "event": event.value},
            )
            return subscription

        subscription.status = next_status
        update_fields = ["status", "updated_at"]
        if next_status == SubscriptionStatus.CANCELED:
            subscription.canceled_at = timezone.now()
            update_fields.append("canceled_at")
        subscription.save(update_fields=update_fields)
        log.info(
            "subscription_transition",
            extra={
                "subscription_id": subscription.pk,
                "from": previous,
                "to": next_status,
                "event": event.value,
            },
        )
        return subscription

    def transition_to(self, subscription: Subscription, target: str) -> Subscription:
        try:
            target_status = SubscriptionStatus(target)
        except ValueError as exc:
            raise InvalidInput(f"Unknown subscription status {target!r}") from exc
        if subscription.status == target_status:
            log.debug(
                "subscription_status_unchanged",
                extra={"subscription_id": subscription.pk, "status": target_status},
            )
            return subscription
        event = state.event_towards(subscription.status, target_status)
        return self.transition(subscription, event)

    @transaction.atomic
    def start_period(self, subscription: Subscription, *, period_end=None) -> Subscription:
        subscription = Subscription.objects.select_for_update().get(pk=subscription.pk)
        subscription.current_period_start = timezone.now()
        subscription.current_period_end = period_end
        subscription.save(update_fields=["current_period_start", "current_period_end", "updated_at"])
        return subscription

    @transaction.atomic
    def retire_plan(self, plan: SubscriptionPlan) -> bool:
        """Deactivate a plan with live subscribers, delete it otherwise.

        Returns True when the plan row was deleted. Completed grants issued
        under the plan are never touched.
        """
        plan = SubscriptionPlan.objects.select_for_update().get(pk=plan.pk)
        if plan.subscriptions.not_canceled().exists():
            if plan.is_active:
                plan.is_active = False
                plan.save(update_fields=["is_active", "updated_at"])
            log.info("plan_deactivated", extra={"plan_id": plan.pk, "storefront_id": plan.storefront_id})
            return False
        plan_id = plan.pk
        plan.delete()
        log.info("plan_deleted", extra={"plan_id": plan_id})
        return True


def get_subscription_service() -> SubscriptionService:
    return SubscriptionService()
