from __future__ import annotations

from django.conf import settings
from django.db import OperationalError, connection
from django.db.migrations.recorder import MigrationRecorder
from django.http import HttpRequest, JsonResponse
from django.utils import timezone
from django.views.decorators.http import require_GET


@require_GET
def health_view(request: HttpRequest) -> JsonResponse:
    try:
        recorder = MigrationRecorder(connection)
        billing_qs = recorder.migration_qs.filter(app="billing")
        latest = billing_qs.order_by("-applied").values_list("name", "applied").first()
        migration_info = {
            "applied_count": billing_qs.count(),
            "latest_name": latest[0] if latest else None,
            "latest_applied": latest[1].isoformat() if latest and latest[1] else None,
        }
    except OperationalError:
        migration_info = {"applied_count": 0, "latest_name": None, "latest_applied": None}

    return JsonResponse(
        {
            "events_enabled": bool(getattr(settings, "ENTITLEMENTS_EVENTS_ENABLED", False)),
            "webhook_secret_configured": bool(getattr(settings, "ENTITLEMENTS_WEBHOOK_SECRET", "")),
            "resolver_budget_ms": getattr(settings, "ENTITLEMENTS_RESOLVER_BUDGET_MS", 0),
            "migrations": migration_info,
            "timestamp": timezone.now().isoformat(),
        }
    )
