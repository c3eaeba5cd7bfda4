from __future__ import annotations

from django.contrib import admin, messages

from apps.memberships.domain.errors import InvalidTransition
from apps.memberships.domain.state import SubscriptionEvent
from apps.memberships.services import get_subscription_service

from .models import Subscription, SubscriptionPlan


@admin.register(SubscriptionPlan)
class SubscriptionPlanAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "name",
        "storefront",
        "tier",
        "price_monthly_cents",
        "price_yearly_cents",
        "all_courses",
        "all_products",
        "is_active",
    )
    list_filter = ("storefront", "is_active", "all_courses", "all_products")
    search_fields = ("name", "storefront__name")
    filter_horizontal = ("courses", "products")
    actions = ["retire_plans"]

    @admin.action(description="Retire selected plans")
    def retire_plans(self, request, queryset):
        service = get_subscription_service()
        deleted = deactivated = 0
        for plan in queryset:
            if service.retire_plan(plan):
                deleted += 1
            else:
                deactivated += 1
        self.message_user(
            request,
            f"{deleted} plan(s) deleted, {deactivated} plan(s) deactivated.",
            level=messages.SUCCESS,
        )


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "plan", "storefront", "status", "interval", "current_period_end", "created_at")
    list_filter = ("status", "interval", "storefront")
    search_fields = ("user__username", "user__email", "external_id")
    readonly_fields = ("created_at", "updated_at", "canceled_at")
    actions = ["cancel_subscriptions"]

    @admin.action(description="Cancel selected subscriptions")
    def cancel_subscriptions(self, request, queryset):
        service = get_subscription_service()
        canceled = 0
        for subscription in queryset:
            try:
                service.transition(subscription, SubscriptionEvent.CANCEL)
            except InvalidTransition as exc:  # pragma: no cover - admin only
                self.message_user(request, str(exc), level=messages.ERROR)
            else:
                canceled += 1
        if canceled:
            self.message_user(request, f"{canceled} subscription(s) canceled.", level=messages.SUCCESS)
