from __future__ import annotations

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from apps.catalog.models import Course, Storefront
from apps.catalog.refs import ContentKind, ContentRef


class GrantRoute(models.TextChoices):
    PURCHASE = "purchase", "Purchase"
    SUBSCRIPTION = "subscription", "Subscription"
    BUNDLE = "bundle", "Bundle"
    ADMIN_OVERRIDE = "admin_override", "Admin override"


class GrantStatus(models.TextChoices):
    """Grant status.

    The transition table lives in ``apps.billing.domain.state``.
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    REFUNDED = "refunded", "Refunded"


class CustomerType(models.TextChoices):
    LEAD = "lead", "Lead"
    PAYING = "paying", "Paying"


class CustomerStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"


class WebhookEventStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PROCESSED = "processed", "Processed"
    SKIPPED = "skipped", "Skipped"
    FAILED = "failed", "Failed"


class GrantQuerySet(models.QuerySet):
    def completed(self):
        return self.filter(status=GrantStatus.COMPLETED)

    def for_ref(self, ref: ContentRef):
        return self.filter(content_kind=ref.kind, content_id=ref.id)


class Grant(models.Model):
    """One row per access-granting event.

    Rows are append-only apart from the status flip and access telemetry.
    """

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="grants")
    storefront = models.ForeignKey(Storefront, on_delete=models.PROTECT, related_name="grants")
    # Blank for subscription-period grants, which pay for a plan rather than an item.
    content_kind = models.CharField(max_length=16, choices=ContentKind.choices, blank=True, default="")
    content_id = models.PositiveBigIntegerField(null=True, blank=True)
    route = models.CharField(max_length=20, choices=GrantRoute.choices)
    amount = models.PositiveIntegerField(default=0, validators=[MinValueValidator(0)])
    currency = models.CharField(max_length=3, default="USD")
    status = models.CharField(max_length=16, choices=GrantStatus.choices, default=GrantStatus.COMPLETED)
    external_txn_id = models.CharField(max_length=200, blank=True, default="")
    subscription = models.ForeignKey(
        "memberships.Subscription",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="grants",
    )
    granted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="issued_grants",
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    last_accessed_at = models.DateTimeField(null=True, blank=True)
    access_count = models.PositiveIntegerField(default=0)
    customer_synced_at = models.DateTimeField(null=True, blank=True)

    objects = GrantQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["user", "content_kind", "content_id"],
                condition=models.Q(route="purchase", status="completed"),
                name="billing_unique_completed_purchase",
            ),
            models.UniqueConstraint(
                fields=["user", "content_kind", "content_id"],
                condition=models.Q(route="admin_override", status="completed"),
                name="billing_unique_completed_admin_override",
            ),
        ]
        indexes = [
            models.Index(fields=["user", "content_kind", "content_id"], name="billing_grant_user_content_idx"),
            models.Index(fields=["user", "storefront"], name="billing_grant_user_store_idx"),
            models.Index(fields=["external_txn_id"], name="billing_grant_txn_idx"),
            models.Index(fields=["status"], name="billing_grant_status_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"Grant#{self.pk} {self.route} {self.content_kind}:{self.content_id} user={self.user_id} {self.status}"

    @property
    def content_ref(self) -> ContentRef | None:
        if not self.content_kind or self.content_id is None:
            return None
        return ContentRef(ContentKind(self.content_kind), int(self.content_id))


class Enrollment(models.Model):
    """Shadow row read by the consumption surface for purchased courses."""

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="enrollments")
    course = models.ForeignKey(Course, on_delete=models.CASCADE, related_name="enrollments")
    grant = models.ForeignKey(Grant, null=True, blank=True, on_delete=models.SET_NULL, related_name="enrollments")
    enrolled_at = models.DateTimeField(default=timezone.now)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["user", "course"], name="billing_unique_enrollment"),
        ]
        indexes = [models.Index(fields=["user", "course"], name="billing_enroll_user_course_idx")]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"Enrollment({self.user_id} -> {self.course_id})"


class Customer(models.Model):
    """Per-storefront view of a buyer, keyed by email."""

    email = models.CharField(max_length=254)
    storefront = models.ForeignKey(Storefront, on_delete=models.CASCADE, related_name="customers")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="customer_records",
    )
    name = models.CharField(max_length=180, blank=True, default="")
    source = models.CharField(max_length=60, blank=True, default="")
    type = models.CharField(max_length=10, choices=CustomerType.choices, default=CustomerType.LEAD)
    status = models.CharField(max_length=10, choices=CustomerStatus.choices, default=CustomerStatus.ACTIVE)
    total_spent = models.PositiveBigIntegerField(default=0)
    last_activity_at = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["email", "storefront"], name="billing_unique_customer_per_storefront"),
        ]
        indexes = [
            models.Index(fields=["storefront", "type"], name="billing_cust_store_type_idx"),
            models.Index(fields=["last_activity_at"], name="billing_cust_last_activity_idx"),
        ]
        ordering = ["-last_activity_at"]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"Customer<{self.email}@{self.storefront_id} {self.type}>"


class WebhookEvent(models.Model):
    event_id = models.CharField(max_length=200, unique=True)
    event_type = models.CharField(max_length=120)
    status = models.CharField(max_length=20, choices=WebhookEventStatus.choices, default=WebhookEventStatus.PENDING)
    grant = models.ForeignKey(Grant, null=True, blank=True, on_delete=models.SET_NULL, related_name="webhook_events")
    correlation_id = models.CharField(max_length=64, blank=True, default="")
    raw_payload = models.JSONField(default=dict, blank=True)
    signature = models.CharField(max_length=255, blank=True, default="")
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)
    last_error = models.TextField(blank=True, default="")

    class Meta:
        indexes = [
            models.Index(fields=["event_type"], name="billing_event_type_idx"),
            models.Index(fields=["status"], name="billing_event_status_idx"),
            models.Index(fields=["created_at"], name="billing_event_created_idx"),
        ]
        ordering = ["-created_at"]

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"WebhookEvent({self.event_id}, {self.event_type}, {self.status})"

    def mark(self, status: str, *, error: str = "", grant: Grant | None = None) -> None:
        self.status = status
        self.processed_at = timezone.now()
        self.last_error = error
        fields = ["status", "processed_at", "last_error", "updated_at"]
        if grant is not None:
            self.grant = grant
            fields.append("grant")
        self.save(update_fields=fields)
