import os
from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "studiopass.settings.prod")  # ou dev selon l'env

app = Celery("studiopass")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
