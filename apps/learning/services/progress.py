from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from django.db.models import Sum
from django.utils import timezone

from apps.catalog.models import Course
from apps.common.errors import InvalidInput, NotFoundError, log_integrity_warning
from apps.content.models import Chapter, Lesson, Module
from apps.learning.models import ProgressFact

log = logging.getLogger("learning.progress")


@dataclass(frozen=True)
class ProgressSummary:
    percent: int
    completed_chapters: int
    total_chapters: int

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def compute_percent(completed: int, total: int) -> int:
    """Half-up rounded percentage; 0 when there is nothing to complete."""
    if total <= 0:
        return 0
    value = (Decimal(completed) * 100 / Decimal(total)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(value)))


def _require_user(user: Any) -> None:
    if user is None or not getattr(user, "is_authenticated", False) or getattr(user, "pk", None) is None:
        raise InvalidInput("An authenticated user is required")


def _as_id(raw: Any, label: str) -> int:
    if isinstance(raw, bool):
        raise InvalidInput(f"Invalid {label} id {raw!r}")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"Invalid {label} id {raw!r}") from exc
    if value <= 0:
        raise InvalidInput(f"Invalid {label} id {raw!r}")
    return value


class ProgressAggregator:
    """Chapter-level facts in, derived completion out.

    Totals are recounted from the current published tree on every read, so
    adding chapters lowers the percentage without touching stored facts.
    """

    def record_chapter_completion(
        self,
        user: Any,
        chapter_id: Any,
        completed: bool,
        time_spent_seconds: Any = 0,
    ) -> ProgressFact:
        _require_user(user)
        chapter_id = _as_id(chapter_id, "chapter")
        if isinstance(time_spent_seconds, bool):
            raise InvalidInput("time_spent_seconds must be an integer")
        try:
            seconds = int(time_spent_seconds or 0)
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"Invalid time_spent_seconds {time_spent_seconds!r}") from exc
        if seconds < 0:
            raise InvalidInput("time_spent_seconds cannot be negative")

        chapter = Chapter.objects.select_related("lesson__module").filter(pk=chapter_id).first()
        if chapter is None:
            raise NotFoundError("Chapter", chapter_id)

        now = timezone.now()
        fact, _ = ProgressFact.objects.update_or_create(
            user=user,
            chapter=chapter,
            defaults={
                "course_id": chapter.lesson.module.course_id,
                "is_completed": bool(completed),
                "completed_at": now if completed else None,
                "time_spent_seconds": seconds,
                "last_accessed_at": now,
            },
        )
        log.info(
            "chapter_progress_recorded",
            extra={
                "user_id": user.pk,
                "chapter_id": chapter.pk,
                "course_id": fact.course_id,
                "completed": fact.is_completed,
                "time_spent_seconds": seconds,
            },
        )
        return fact

    # -- summaries ----------------------------------------------------------------------

    def course_progress(self, user: Any, course_id: Any) -> ProgressSummary:
        _require_user(user)
        course_id = _as_id(course_id, "course")
        if not Course.objects.filter(pk=course_id).exists():
            raise NotFoundError("Course", course_id)
        published = set(Chapter.objects.for_course(course_id).in_published_tree().values_list("id", flat=True))
        completed = self._completed_chapter_ids(user, course_id, published)
        return ProgressSummary(
            percent=compute_percent(len(completed), len(published)),
            completed_chapters=len(completed),
            total_chapters=len(published),
        )

    def module_progress(self, user: Any, module_id: Any) -> ProgressSummary:
        _require_user(user)
        module_id = _as_id(module_id, "module")
        module = Module.objects.filter(pk=module_id).first()
        if module is None:
            raise NotFoundError("Module", module_id)
        chapter_ids = Chapter.objects.filter(lesson__module=module).in_published_tree().values_list("id", flat=True)
        return self._summary_for(user, chapter_ids)

    def lesson_progress(self, user: Any, lesson_id: Any) -> ProgressSummary:
        _require_user(user)
        lesson_id = _as_id(lesson_id, "lesson")
        lesson = Lesson.objects.filter(pk=lesson_id).first()
        if lesson is None:
            raise NotFoundError("Lesson", lesson_id)
        chapter_ids = Chapter.objects.filter(lesson=lesson).in_published_tree().values_list("id", flat=True)
        return self._summary_for(user, chapter_ids)

    def user_courses_progress(self, user: Any) -> list[dict[str, Any]]:
        """One summary per course the user has recorded progress in."""
        _require_user(user)
        course_ids = (
            ProgressFact.objects.filter(user=user)
            .order_by()
            .values_list("course_id", flat=True)
            .distinct()
        )
        results = []
        for course in Course.objects.filter(pk__in=list(course_ids)).order_by("title"):
            summary = self.course_progress(user, course.pk)
            results.append({"course_id": course.pk, "course_title": course.title, **summary.as_dict()})
        return results

    def course_outline(self, user: Any, course_id: Any) -> dict[str, Any]:
        """Published tree of the course annotated with the user's progress."""
        _require_user(user)
        course_id = _as_id(course_id, "course")
        course = Course.objects.filter(pk=course_id).first()
        if course is None:
            raise NotFoundError("Course", course_id)

        chapters = list(
            Chapter.objects.for_course(course_id)
            .in_published_tree()
            .select_related("lesson__module")
            .order_by("lesson__module__position", "lesson__module__id", "lesson__position", "lesson__id", "position", "id")
        )
        facts = {
            fact.chapter_id: fact
            for fact in ProgressFact.objects.filter(user=user, chapter_id__in=[c.pk for c in chapters])
        }
        summary = self.course_progress(user, course_id)

        modules: list[dict[str, Any]] = []
        module_index: dict[int, dict[str, Any]] = {}
        lesson_index: dict[int, dict[str, Any]] = {}
        for chapter in chapters:
            lesson = chapter.lesson
            module = lesson.module
            module_node = module_index.get(module.pk)
            if module_node is None:
                module_node = {"id": module.pk, "title": module.title, "position": module.position, "lessons": []}
                module_index[module.pk] = module_node
                modules.append(module_node)
            lesson_node = lesson_index.get(lesson.pk)
            if lesson_node is None:
                lesson_node = {"id": lesson.pk, "title": lesson.title, "position": lesson.position, "chapters": []}
                lesson_index[lesson.pk] = lesson_node
                module_node["lessons"].append(lesson_node)
            fact = facts.get(chapter.pk)
            lesson_node["chapters"].append(
                {
                    "id": chapter.pk,
                    "title": chapter.title,
                    "position": chapter.position,
                    "is_free": chapter.is_free,
                    "is_completed": bool(fact and fact.is_completed),
                    "completed_at": fact.completed_at if fact else None,
                    "time_spent_seconds": fact.time_spent_seconds if fact else 0,
                }
            )

        for module_node in modules:
            module_chapters = [c for lesson in module_node["lessons"] for c in lesson["chapters"]]
            module_node["percent"] = compute_percent(
                sum(1 for c in module_chapters if c["is_completed"]), len(module_chapters)
            )
            for lesson_node in module_node["lessons"]:
                lesson_node["percent"] = compute_percent(
                    sum(1 for c in lesson_node["chapters"] if c["is_completed"]), len(lesson_node["chapters"])
                )

        course_facts = ProgressFact.objects.filter(user=user, course_id=course_id)
        last_fact = course_facts.filter(chapter__isnull=False).order_by("-last_accessed_at", "-id").first()
        total_time = course_facts.aggregate(total=Sum("time_spent_seconds"))["total"] or 0
        return {
            "course": {"id": course.pk, "title": course.title},
            **summary.as_dict(),
            "total_time_spent_seconds": total_time,
            "last_accessed_chapter_id": last_fact.chapter_id if last_fact else None,
            "modules": modules,
        }

    # -- internals ----------------------------------------------------------------------

    def _summary_for(self, user: Any, chapter_ids: Iterable[int]) -> ProgressSummary:
        ids = set(chapter_ids)
        completed = ProgressFact.objects.filter(user=user, is_completed=True, chapter_id__in=ids).count()
        return ProgressSummary(
            percent=compute_percent(completed, len(ids)),
            completed_chapters=completed,
            total_chapters=len(ids),
        )

    def _completed_chapter_ids(self, user: Any, course_id: int, published: set[int]) -> set[int]:
        rows = ProgressFact.objects.filter(user=user, is_completed=True, course_id=course_id).values_list(
            "id", "chapter_id"
        )
        completed = set()
        stray = []
        course_chapters: set[int] | None = None
        for fact_id, chapter_id in rows:
            if chapter_id in published:
                completed.add(chapter_id)
                continue
            if course_chapters is None:
                course_chapters = set(Chapter.objects.for_course(course_id).values_list("id", flat=True))
            # Unpublished chapters are expected; missing or moved ones are not.
            if chapter_id is None or chapter_id not in course_chapters:
                stray.append(fact_id)
        if stray:
            log_integrity_warning(
                log,
                "progress_fact_outside_course_tree",
                user_id=user.pk,
                course_id=course_id,
                fact_ids=stray,
            )
        # Facts recorded while the chapter sat under another course still count once it moves here.
        moved_in = ProgressFact.objects.filter(user=user, is_completed=True, chapter_id__in=published).exclude(
            course_id=course_id
        )
        completed.update(moved_in.values_list("chapter_id", flat=True))
        return completed


def get_progress_aggregator() -> ProgressAggregator:
    return ProgressAggregator()
