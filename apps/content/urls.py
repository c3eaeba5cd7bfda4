# apps/content/urls.py
from django.urls import path

from .views import AccessCheckAPIView

app_name = "content"

urlpatterns = [
    path("access/", AccessCheckAPIView.as_view(), name="access-check"),
]
