"""Closed reference to a piece of gated content."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from django.db import models

from apps.common.errors import InvalidInput, NotFoundError


class ContentKind(models.TextChoices):
    COURSE = "course", "Course"
    PRODUCT = "product", "Digital product"
    BUNDLE = "bundle", "Bundle"
    CHAPTER = "chapter", "Chapter"


@dataclass(frozen=True)
class ContentRef:
    kind: ContentKind
    id: int

    def __post_init__(self) -> None:
        if not isinstance(self.kind, ContentKind):
            object.__setattr__(self, "kind", _coerce_kind(self.kind))
        if isinstance(self.id, bool) or not isinstance(self.id, int) or self.id <= 0:
            raise InvalidInput(f"Invalid content id {self.id!r}")

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @classmethod
    def course(cls, pk: int) -> "ContentRef":
        return cls(ContentKind.COURSE, pk)

    @classmethod
    def product(cls, pk: int) -> "ContentRef":
        return cls(ContentKind.PRODUCT, pk)

    @classmethod
    def bundle(cls, pk: int) -> "ContentRef":
        return cls(ContentKind.BUNDLE, pk)

    @classmethod
    def chapter(cls, pk: int) -> "ContentRef":
        return cls(ContentKind.CHAPTER, pk)

    @classmethod
    def parse(cls, kind: Any, raw_id: Any) -> "ContentRef":
        """Build a reference from untrusted input (query params, webhook payloads)."""
        try:
            pk = int(str(raw_id).strip())
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"Invalid content id {raw_id!r}") from exc
        return cls(_coerce_kind(kind), pk)

    @classmethod
    def from_string(cls, value: str) -> "ContentRef":
        kind, sep, raw_id = (value or "").partition(":")
        if not sep:
            raise InvalidInput(f"Malformed content reference {value!r}")
        return cls.parse(kind, raw_id)

    @classmethod
    def for_instance(cls, obj: Any) -> "ContentRef":
        from apps.catalog.models import Bundle, Course, DigitalProduct  # late import to avoid cycles
        from apps.content.models import Chapter

        if isinstance(obj, Course):
            return cls.course(obj.pk)
        if isinstance(obj, DigitalProduct):
            return cls.product(obj.pk)
        if isinstance(obj, Bundle):
            return cls.bundle(obj.pk)
        if isinstance(obj, Chapter):
            return cls.chapter(obj.pk)
        raise InvalidInput(f"{type(obj).__name__} is not gated content")


def _coerce_kind(kind: Any) -> ContentKind:
    try:
        return ContentKind(str(kind).strip().lower())
    except ValueError as exc:
        raise InvalidInput(f"Unknown content kind {kind!r}") from exc


def load_content(ref: ContentRef) -> Any:
    """Return the model instance behind ``ref`` or raise NotFoundError."""
    from apps.catalog.models import Bundle, Course, DigitalProduct  # late import to avoid cycles
    from apps.content.models import Chapter

    if ref.kind == ContentKind.COURSE:
        model, qs = Course, Course.objects.all()
    elif ref.kind == ContentKind.PRODUCT:
        model, qs = DigitalProduct, DigitalProduct.objects.all()
    elif ref.kind == ContentKind.BUNDLE:
        model, qs = Bundle, Bundle.objects.all()
    elif ref.kind == ContentKind.CHAPTER:
        model, qs = Chapter, Chapter.objects.select_related("lesson__module__course")
    else:  # pragma: no cover - closed enum
        raise InvalidInput(f"Unknown content kind {ref.kind!r}")

    obj = qs.filter(pk=ref.id).first()
    if obj is None:
        raise NotFoundError(model.__name__, ref.id)
    return obj


def storefront_pk(storefront: Any) -> int:
    """Accept a Storefront instance or a primary key."""
    if storefront is None:
        raise InvalidInput("A storefront is required")
    pk = getattr(storefront, "pk", storefront)
    if isinstance(pk, bool) or not isinstance(pk, int) or pk <= 0:
        raise InvalidInput(f"Invalid storefront {storefront!r}")
    return pk


def storefront_id_of(obj: Any) -> int:
    from apps.content.models import Chapter  # late import to avoid cycles

    if isinstance(obj, Chapter):
        return obj.lesson.module.course.storefront_id
    return obj.storefront_id


__all__ = ["ContentKind", "ContentRef", "load_content", "storefront_id_of", "storefront_pk"]
