from __future__ import annotations

import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail
from django.db import DatabaseError

from apps.billing.metrics import record_side_effect_failure
from apps.billing.models import Grant
from apps.billing.services import get_customer_service, get_grant_ledger
from apps.catalog.refs import load_content
from apps.common.errors import DownstreamSideEffectFailure, NotFoundError

log = logging.getLogger("billing.tasks")


@shared_task(bind=True, name="billing.touch_grant_access", ignore_result=True)
def touch_grant_access(self, grant_id: int) -> None:
    get_grant_ledger().touch_access(grant_id)


@shared_task(
    bind=True,
    name="billing.sync_customer_from_grant",
    ignore_result=False,
    autoretry_for=(DownstreamSideEffectFailure,),
    retry_backoff=True,
    retry_jitter=True,
    retry_kwargs={"max_retries": 5},
)
def sync_customer_from_grant(self, grant_id: int) -> int | None:
    try:
        customer = get_customer_service().apply_grant(grant_id)
    except NotFoundError:
        log.warning("customer_sync_grant_missing", extra={"grant_id": grant_id})
        return None
    except DatabaseError as exc:
        record_side_effect_failure("customer_sync")
        raise DownstreamSideEffectFailure(f"Customer sync failed for grant {grant_id}") from exc
    return customer.pk


def _recipient(grant: Grant) -> str:
    user = grant.user
    return (getattr(user, "email", "") or "").strip()


def _content_title(grant: Grant) -> str:
    ref = grant.content_ref
    if ref is None:
        return ""
    try:
        obj = load_content(ref)
    except NotFoundError:
        return str(ref)
    return getattr(obj, "title", "") or getattr(obj, "name", "") or str(ref)


@shared_task(bind=True, name="billing.send_purchase_notification", ignore_result=False, max_retries=3, default_retry_delay=10)
def send_purchase_notification(self, grant_id: int) -> str | None:
    if not settings.ENTITLEMENTS_SEND_PURCHASE_EMAILS:
        return None
    grant = Grant.objects.select_related("user", "storefront").filter(pk=grant_id).first()
    if grant is None:
        log.warning("purchase_notification_grant_missing", extra={"grant_id": grant_id})
        return None
    recipient = _recipient(grant)
    if not recipient:
        log.info("purchase_notification_skip_no_email", extra={"grant_id": grant.pk})
        return None

    title = _content_title(grant)
    site_name = getattr(settings, "SITE_NAME", "Studiopass")
    subject = f"[{site_name}] Your access to {title}" if title else f"[{site_name}] Purchase confirmed"
    body = (
        f"Hello,\n\nYour purchase on {grant.storefront.name} is confirmed"
        f"{f' and {title} is now available in your library' if title else ''}.\n\n"
        f"Reference: {grant.external_txn_id or grant.pk}\n\n{site_name}"
    )
    try:
        send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, [recipient])
    except Exception as exc:
        record_side_effect_failure("purchase_notification")
        log.exception("purchase_notification_failed", extra={"grant_id": grant.pk})
        raise self.retry(exc=exc)
    return recipient
