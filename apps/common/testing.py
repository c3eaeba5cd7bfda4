"""Builders shared by the app test suites."""
from __future__ import annotations

from typing import Any

from django.contrib.auth import get_user_model

from apps.catalog.models import Course, DigitalProduct, Storefront
from apps.content.models import Chapter, Lesson, Module


def make_user(username: str, **extra: Any):
    extra.setdefault("email", f"{username}@example.com")
    return get_user_model().objects.create_user(username=username, password="Password-2025", **extra)


def make_storefront(owner, slug: str = "studio") -> Storefront:
    return Storefront.objects.create(owner=owner, slug=slug, name=slug.title())


def make_course(storefront: Storefront, slug: str = "course", *, published: bool = True, price_cents: int = 4900) -> Course:
    return Course.objects.create(
        storefront=storefront,
        slug=slug,
        title=slug.replace("-", " ").title(),
        price_cents=price_cents,
        is_published=published,
    )


def make_product(storefront: Storefront, slug: str = "product") -> DigitalProduct:
    return DigitalProduct.objects.create(storefront=storefront, slug=slug, title=slug.title(), price_cents=1900)


def add_chapters(course: Course, count: int, *, free: int = 0, module: Module | None = None) -> list[Chapter]:
    """Append ``count`` chapters to ``course`` under one lesson; the first ``free`` are free."""
    if module is None:
        module = Module.objects.create(course=course, title="Module", position=course.modules.count() + 1)
    lesson = Lesson.objects.create(module=module, title="Lesson", position=module.lessons.count() + 1)
    return [
        Chapter.objects.create(lesson=lesson, title=f"Chapter {i}", position=i, is_free=i <= free)
        for i in range(1, count + 1)
    ]
