from django.urls import path

from ..views import health_view
from ..webhooks import entitlement_events_view

app_name = "billing"
urlpatterns = [
    path("events/", entitlement_events_view, name="events"),
    path("health/", health_view, name="health"),
]
