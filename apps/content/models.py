from __future__ import annotations

from django.db import models


class PublishedQuerySet(models.QuerySet):
    def published(self):
        return self.filter(is_published=True)


class Module(models.Model):
    course = models.ForeignKey("catalog.Course", related_name="modules", on_delete=models.CASCADE)
    title = models.CharField(max_length=200)
    position = models.PositiveIntegerField(default=1)
    is_published = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PublishedQuerySet.as_manager()

    class Meta:
        ordering = ("course", "position", "id")
        indexes = [models.Index(fields=["course", "position"], name="content_module_course_pos_idx")]

    def __str__(self) -> str:
        return f"{self.course_id} / {self.position}. {self.title}"


class Lesson(models.Model):
    module = models.ForeignKey(Module, related_name="lessons", on_delete=models.CASCADE)
    title = models.CharField(max_length=200)
    position = models.PositiveIntegerField(default=1)
    is_published = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PublishedQuerySet.as_manager()

    class Meta:
        ordering = ("module", "position", "id")
        indexes = [models.Index(fields=["module", "position"], name="content_lesson_module_pos_idx")]

    def __str__(self) -> str:
        return f"{self.module} — {self.position}. {self.title}"


class ChapterType(models.TextChoices):
    VIDEO = "video", "Video"
    ARTICLE = "article", "Article"
    DOCUMENT = "document", "Document"


class ChapterQuerySet(PublishedQuerySet):
    def for_course(self, course_id: int):
        return self.filter(lesson__module__course_id=course_id)

    def in_published_tree(self):
        """Chapters whose own flag and every ancestor flag are published."""
        return self.filter(
            is_published=True,
            lesson__is_published=True,
            lesson__module__is_published=True,
        )


class Chapter(models.Model):
    lesson = models.ForeignKey(Lesson, related_name="chapters", on_delete=models.CASCADE)
    title = models.CharField(max_length=200)
    position = models.PositiveIntegerField(default=1)
    type = models.CharField(max_length=16, choices=ChapterType.choices, default=ChapterType.ARTICLE)
    duration_seconds = models.PositiveIntegerField(blank=True, null=True)

    is_published = models.BooleanField(default=True)
    # Free chapters bypass entitlement entirely, anonymous readers included.
    is_free = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = ChapterQuerySet.as_manager()

    class Meta:
        ordering = ("lesson", "position", "id")
        indexes = [
            models.Index(fields=["lesson", "position"], name="content_chapter_lesson_pos_idx"),
            models.Index(fields=["is_free"], name="content_chapter_is_free_idx"),
        ]

    @property
    def course_id(self) -> int:
        return self.lesson.module.course_id

    @property
    def course(self):
        return self.lesson.module.course

    @property
    def in_published_tree(self) -> bool:
        lesson = self.lesson
        return bool(self.is_published and lesson.is_published and lesson.module.is_published)

    def __str__(self) -> str:
        return f"{self.lesson} — {self.position}. {self.title}"
