from __future__ import annotations

from django.contrib import admin, messages

from apps.billing.domain.errors import InvalidTransition
from apps.billing.services import get_customer_service, get_grant_ledger

from .models import Customer, Enrollment, Grant, WebhookEvent


@admin.register(Grant)
class GrantAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "user",
        "storefront",
        "content_kind",
        "content_id",
        "route",
        "amount",
        "currency",
        "status",
        "access_count",
        "created_at",
    )
    list_filter = ("route", "status", "content_kind", "storefront")
    search_fields = ("id", "user__username", "user__email", "external_txn_id")
    date_hierarchy = "created_at"
    readonly_fields = (
        "created_at",
        "updated_at",
        "refunded_at",
        "last_accessed_at",
        "access_count",
        "customer_synced_at",
    )
    actions = ["refund_grants", "resync_customers"]

    @admin.action(description="Mark selected grants as refunded")
    def refund_grants(self, request, queryset):
        ledger = get_grant_ledger()
        refunded = 0
        for grant in queryset:
            try:
                ledger.record_refund(grant.pk)
            except InvalidTransition as exc:  # pragma: no cover - admin only
                self.message_user(request, f"Grant {grant.pk}: {exc}", level=messages.ERROR)
            else:
                refunded += 1
        if refunded:
            self.message_user(request, f"{refunded} grant(s) refunded.", level=messages.SUCCESS)

    @admin.action(description="Apply selected grants to customer records")
    def resync_customers(self, request, queryset):
        service = get_customer_service()
        for grant in queryset:
            service.apply_grant(grant)
        self.message_user(request, "Customer records updated.", level=messages.SUCCESS)


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "course", "grant", "enrolled_at")
    list_filter = ("course",)
    search_fields = ("user__username", "user__email", "course__title")


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ("id", "email", "storefront", "type", "status", "total_spent", "last_activity_at")
    list_filter = ("storefront", "type", "status")
    search_fields = ("email", "name")
    readonly_fields = ("created_at", "updated_at")


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    list_display = ("event_id", "event_type", "status", "grant", "processed_at", "created_at")
    list_filter = ("event_type", "status")
    search_fields = ("event_id", "correlation_id")
    readonly_fields = ("raw_payload", "signature", "last_error", "processed_at", "created_at", "updated_at")
