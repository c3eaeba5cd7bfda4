"""URL configuration for the studiopass project."""
from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    path("api/", include(("apps.content.urls", "content"), namespace="content")),
    path("api/learning/", include(("apps.learning.urls", "learning"), namespace="learning")),
    path("billing/", include(("apps.billing.urls.urls", "billing"), namespace="billing")),
]
