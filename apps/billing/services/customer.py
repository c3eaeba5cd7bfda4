from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from django.db import transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone

from apps.billing.models import Customer, CustomerStatus, CustomerType, Grant, GrantStatus
from apps.catalog.refs import storefront_pk
from apps.common.errors import NotFoundError

log = logging.getLogger("billing.customer")


@dataclass(frozen=True)
class CustomerStats:
    total: int
    leads: int
    paying: int
    revenue: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class CustomerLifecycleService:
    """Keeps the per-storefront Customer row in step with the grant ledger.

    ``type`` only ratchets lead -> paying and ``total_spent`` only grows.
    """

    def apply_grant(self, grant: Grant | int) -> Customer:
        grant_id = getattr(grant, "pk", grant)
        with transaction.atomic():
            grant = Grant.objects.select_for_update().select_related("user").filter(pk=grant_id).first()
            if grant is None:
                raise NotFoundError("Grant", grant_id)
            email = customer_email(grant.user)
            # At-least-once delivery: a grant is counted once. Pending grants only register the lead.
            already_applied = grant.customer_synced_at is not None or grant.status == GrantStatus.PENDING

            now = timezone.now()
            customer, created_row = Customer.objects.select_for_update().get_or_create(
                email=email,
                storefront_id=grant.storefront_id,
                defaults={
                    "user": grant.user,
                    "name": _display_name(grant.user),
                    "source": grant.route,
                    "type": CustomerType.LEAD,
                    "status": CustomerStatus.ACTIVE,
                    "last_activity_at": now,
                },
            )
            if already_applied:
                log.debug("customer_sync_skipped", extra={"grant_id": grant.pk, "customer_id": customer.pk})
                return customer

            customer.last_activity_at = now
            customer.status = CustomerStatus.ACTIVE
            if customer.user_id is None:
                customer.user = grant.user
            if not customer.name:
                customer.name = _display_name(grant.user)
            if grant.amount > 0:
                customer.type = CustomerType.PAYING
                customer.total_spent = customer.total_spent + grant.amount
            customer.save()

            grant.customer_synced_at = now
            grant.save(update_fields=["customer_synced_at", "updated_at"])

        log.info(
            "customer_synced",
            extra={
                "customer_id": customer.pk,
                "grant_id": grant.pk,
                "storefront_id": grant.storefront_id,
                "customer_type": customer.type,
                "new_customer": created_row,
            },
        )
        return customer

    def stats(self, storefront: Any) -> CustomerStats:
        row = Customer.objects.filter(storefront_id=storefront_pk(storefront)).aggregate(
            total=Count("id"),
            leads=Count("id", filter=Q(type=CustomerType.LEAD)),
            paying=Count("id", filter=Q(type=CustomerType.PAYING)),
            revenue=Sum("total_spent"),
        )
        return CustomerStats(
            total=row["total"] or 0,
            leads=row["leads"] or 0,
            paying=row["paying"] or 0,
            revenue=row["revenue"] or 0,
        )


def customer_email(user: Any) -> str:
    email = (getattr(user, "email", "") or "").strip().lower()
    return email or str(user.pk)


def _display_name(user: Any) -> str:
    full_name = ""
    if hasattr(user, "get_full_name"):
        full_name = (user.get_full_name() or "").strip()
    return full_name or getattr(user, "username", "") or ""


def get_customer_service() -> CustomerLifecycleService:
    return CustomerLifecycleService()
