from django.contrib import admin

from .models import ProgressFact


@admin.register(ProgressFact)
class ProgressFactAdmin(admin.ModelAdmin):
    list_display = ("user", "course", "chapter", "is_completed", "time_spent_seconds", "last_accessed_at", "completed_at")
    list_filter = ("is_completed", "course")
    search_fields = ("user__username", "chapter__title", "course__title")
    readonly_fields = ("created_at", "updated_at")
