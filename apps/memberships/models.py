from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from apps.catalog.models import Course, DigitalProduct, Storefront


class SubscriptionStatus(models.TextChoices):
    """Subscription lifecycle.

    Transitions live in ``apps.memberships.domain.state``; only ``trialing``
    and ``active`` unlock content.
    """

    TRIALING = "trialing", "Trialing"
    ACTIVE = "active", "Active"
    PAST_DUE = "past_due", "Past due"
    CANCELED = "canceled", "Canceled"


LIVE_STATUSES = (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE)


class BillingInterval(models.TextChoices):
    MONTHLY = "monthly", "Monthly"
    YEARLY = "yearly", "Yearly"


class SubscriptionPlanQuerySet(models.QuerySet):
    def active(self):
        return self.filter(is_active=True)


class SubscriptionPlan(models.Model):
    """Membership tier sold by a storefront.

    ``tier`` orders plans for display only: a higher tier does not inherit the
    explicit course/product lists of lower tiers.
    """

    storefront = models.ForeignKey(Storefront, on_delete=models.CASCADE, related_name="plans")
    name = models.CharField(max_length=160)
    description = models.TextField(blank=True)
    tier = models.PositiveSmallIntegerField(default=1)
    price_monthly_cents = models.PositiveIntegerField(default=0)
    price_yearly_cents = models.PositiveIntegerField(default=0)
    currency = models.CharField(max_length=3, default="USD")

    all_courses = models.BooleanField(default=False)
    all_products = models.BooleanField(default=False)
    courses = models.ManyToManyField(Course, blank=True, related_name="plans")
    products = models.ManyToManyField(DigitalProduct, blank=True, related_name="plans")

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    objects = SubscriptionPlanQuerySet.as_manager()

    class Meta:
        ordering = ["storefront", "tier", "name"]
        indexes = [models.Index(fields=["storefront", "is_active"], name="memberships_plan_store_act_idx")]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.name} (tier {self.tier})"


class SubscriptionQuerySet(models.QuerySet):
    def not_canceled(self):
        return self.exclude(status=SubscriptionStatus.CANCELED)

    def live(self):
        return self.filter(status__in=LIVE_STATUSES)


class Subscription(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="subscriptions")
    # Retiring an unused plan deletes it; historical rows keep their storefront.
    plan = models.ForeignKey(
        SubscriptionPlan,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="subscriptions",
    )
    storefront = models.ForeignKey(Storefront, on_delete=models.CASCADE, related_name="subscriptions")
    status = models.CharField(max_length=16, choices=SubscriptionStatus.choices, default=SubscriptionStatus.ACTIVE)
    interval = models.CharField(max_length=16, choices=BillingInterval.choices, default=BillingInterval.MONTHLY)
    current_period_start = models.DateTimeField(default=timezone.now)
    current_period_end = models.DateTimeField(null=True, blank=True)
    external_id = models.CharField(max_length=200, blank=True, default="", db_index=True)
    canceled_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    objects = SubscriptionQuerySet.as_manager()

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["user", "storefront", "status"], name="memberships_sub_user_store_idx"),
            models.Index(fields=["plan", "status"], name="memberships_sub_plan_stat_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"Subscription(user={self.user_id}, plan={self.plan_id}, status={self.status})"

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    def save(self, *args, **kwargs):
        if self.plan_id and not self.storefront_id:
            self.storefront_id = self.plan.storefront_id
        super().save(*args, **kwargs)
