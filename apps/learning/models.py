from django.conf import settings
from django.db import models
from django.utils import timezone


class ProgressFact(models.Model):
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="progress_facts")
    # Nulled when the chapter is deleted; the orphan is reported and ignored by the aggregator.
    chapter = models.ForeignKey(
        "content.Chapter",
        null=True,
        on_delete=models.SET_NULL,
        related_name="progress_facts",
    )
    # Course at write time; chapters may later move or disappear.
    course = models.ForeignKey("catalog.Course", on_delete=models.CASCADE, related_name="progress_facts")
    is_completed = models.BooleanField(default=False)
    completed_at = models.DateTimeField(null=True, blank=True)
    time_spent_seconds = models.PositiveIntegerField(default=0)
    last_accessed_at = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["user", "chapter"], name="learning_unique_progress_per_chapter"),
        ]
        indexes = [
            models.Index(fields=["user", "course"], name="learning_fact_user_course_idx"),
            models.Index(fields=["chapter", "is_completed"], name="learning_fact_chapter_done_idx"),
        ]

    def __str__(self):
        return f"ProgressFact(user={self.user_id}, chapter={self.chapter_id}, completed={self.is_completed})"
