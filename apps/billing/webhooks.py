from __future__ import annotations

import hashlib
import hmac
import json
import logging
import uuid
from typing import Any, Mapping

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import transaction
from django.http import HttpRequest, HttpResponse, HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from apps.billing.domain.errors import BillingDomainError
from apps.billing.metrics import record_event_processed
from apps.billing.models import Grant, WebhookEvent, WebhookEventStatus
from apps.billing.services import get_grant_ledger
from apps.catalog.refs import ContentRef
from apps.common.errors import EntitlementError, InvalidInput, NotFoundError
from apps.memberships.domain.errors import MembershipsDomainError
from apps.memberships.models import Subscription
from apps.memberships.services import get_subscription_service

log = logging.getLogger("billing.events")

PURCHASE_SUCCEEDED = "purchase.succeeded"
REFUND_SUCCEEDED = "refund.succeeded"
SUBSCRIPTION_PERIOD_STARTED = "subscription.period_started"
SUBSCRIPTION_STATUS_CHANGED = "subscription.status_changed"


def verify_signature(body: bytes, signature: str) -> bool:
    """HMAC-SHA256 over the raw body, hex encoded, optional ``sha256=`` prefix."""
    secret = getattr(settings, "ENTITLEMENTS_WEBHOOK_SECRET", "")
    if not secret or not signature:
        return False
    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, provided)


@csrf_exempt
@require_POST
def entitlement_events_view(request: HttpRequest) -> HttpResponse:
    if not getattr(settings, "ENTITLEMENTS_EVENTS_ENABLED", True):
        return HttpResponse(status=204)

    signature = request.META.get(settings.ENTITLEMENTS_SIGNATURE_HEADER, "")
    if not verify_signature(request.body, signature):
        log.warning("billing.events.signature_invalid")
        return HttpResponseBadRequest("Invalid signature")

    try:
        event = json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return HttpResponseBadRequest("Invalid JSON")
    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        return HttpResponseBadRequest("Missing event id or type")

    correlation_id = request.META.get(settings.ENTITLEMENTS_REQUEST_ID_HEADER, "") or uuid.uuid4().hex
    try:
        _process_event(event, correlation_id=correlation_id, signature=signature)
    except (BillingDomainError, EntitlementError, MembershipsDomainError) as exc:
        log.warning("billing.events.rejected", extra={"event_id": event.get("id"), "error": str(exc)})
        return HttpResponseBadRequest(str(exc))
    except Exception:
        log.exception("billing.events.processing_failed", extra={"event_id": event.get("id")})
        return HttpResponse(status=500)
    return HttpResponse(status=200)


def _process_event(event: Mapping[str, Any], *, correlation_id: str = "", signature: str = "") -> None:
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    data = event.get("data") if isinstance(event.get("data"), Mapping) else {}
    context: dict[str, Any] = {
        "event_id": event_id,
        "event_type": event_type,
        "correlation_id": correlation_id,
    }

    with transaction.atomic():
        record, created = WebhookEvent.objects.select_for_update().get_or_create(
            event_id=event_id,
            defaults={
                "event_type": event_type,
                "status": WebhookEventStatus.PENDING,
                "raw_payload": dict(event),
                "correlation_id": correlation_id,
                "signature": signature,
            },
        )
        if not created and record.status in (WebhookEventStatus.PROCESSED, WebhookEventStatus.SKIPPED):
            record_event_processed(event_type, "duplicate")
            log.info("billing.events.duplicate", extra=context)
            return
        if not created:
            record.event_type = event_type
            record.raw_payload = dict(event)
            record.correlation_id = correlation_id
            record.signature = signature or record.signature
            record.status = WebhookEventStatus.PENDING
            record.save(update_fields=["event_type", "raw_payload", "correlation_id", "signature", "status", "updated_at"])

        handler = _HANDLERS.get(event_type)
        if handler is None:
            record.mark(WebhookEventStatus.SKIPPED, error="unhandled_event_type")
            record_event_processed(event_type, "skipped")
            log.info("billing.events.unhandled", extra=context)
            return

    # Handlers run in their own transaction so a failure still leaves the FAILED marker behind.
    try:
        with transaction.atomic():
            grant = handler(data, context)
    except Exception as exc:
        record.mark(WebhookEventStatus.FAILED, error=str(exc))
        record_event_processed(event_type, "failed")
        raise
    record.mark(WebhookEventStatus.PROCESSED, grant=grant)
    record_event_processed(event_type, "processed")
    log.info("billing.events.processed", extra={**context, "grant_id": grant.pk if grant else None})


def _lookup_user(data: Mapping[str, Any]) -> Any:
    raw = data.get("user_id")
    try:
        user_id = int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Invalid user id {raw!r}") from exc
    user = get_user_model().objects.filter(pk=user_id).first()
    if user is None:
        raise NotFoundError("User", user_id)
    return user


def _storefront_id(data: Mapping[str, Any]) -> int:
    raw = data.get("storefront_id")
    try:
        storefront_id = int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Invalid storefront id {raw!r}") from exc
    if isinstance(raw, bool) or storefront_id <= 0:
        raise InvalidInput(f"Invalid storefront id {raw!r}")
    return storefront_id


def _lookup_subscription(data: Mapping[str, Any]) -> Subscription:
    subscription_id = data.get("subscription_id")
    external_id = str(data.get("external_id") or "")
    subscription = None
    if subscription_id not in (None, ""):
        try:
            subscription = Subscription.objects.filter(pk=int(subscription_id)).first()
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"Invalid subscription id {subscription_id!r}") from exc
    elif external_id:
        subscription = Subscription.objects.filter(external_id=external_id).order_by("-created_at").first()
    if subscription is None:
        raise NotFoundError("Subscription", subscription_id or external_id)
    return subscription


def _handle_purchase(data: Mapping[str, Any], context: Mapping[str, Any]) -> Grant:
    content = data.get("content") if isinstance(data.get("content"), Mapping) else {}
    ref = ContentRef.parse(content.get("kind"), content.get("id"))
    return get_grant_ledger().record_purchase_grant(
        _lookup_user(data),
        ref,
        _storefront_id(data),
        data.get("amount", 0),
        str(data.get("external_txn_id") or context.get("event_id") or ""),
        currency=data.get("currency") or None,
    )


def _handle_refund(data: Mapping[str, Any], context: Mapping[str, Any]) -> Grant:
    ledger = get_grant_ledger()
    grant_id = data.get("grant_id")
    if grant_id in (None, ""):
        grant = ledger.find_by_external_txn(str(data.get("external_txn_id") or ""))
        if grant is None:
            raise NotFoundError("Grant", data.get("external_txn_id"))
        grant_id = grant.pk
    try:
        grant_id = int(grant_id)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Invalid grant id {grant_id!r}") from exc
    return ledger.record_refund(grant_id)


def _handle_period_started(data: Mapping[str, Any], context: Mapping[str, Any]) -> Grant:
    subscription = _lookup_subscription(data)
    get_subscription_service().start_period(subscription)
    return get_grant_ledger().record_subscription_grant(
        subscription,
        amount=data.get("amount", 0),
        external_txn_id=str(data.get("external_txn_id") or context.get("event_id") or ""),
    )


def _handle_status_changed(data: Mapping[str, Any], context: Mapping[str, Any]) -> None:
    subscription = _lookup_subscription(data)
    get_subscription_service().transition_to(subscription, str(data.get("status") or ""))
    return None


_HANDLERS = {
    PURCHASE_SUCCEEDED: _handle_purchase,
    REFUND_SUCCEEDED: _handle_refund,
    SUBSCRIPTION_PERIOD_STARTED: _handle_period_started,
    SUBSCRIPTION_STATUS_CHANGED: _handle_status_changed,
}
