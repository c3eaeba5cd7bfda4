# apps/content/mixins.py
from __future__ import annotations

import logging

from rest_framework.exceptions import NotAuthenticated, NotFound, PermissionDenied

from apps.catalog.capabilities import AccessCapabilities
from apps.catalog.refs import ContentRef
from apps.common.errors import InvalidInput
from apps.content.models import Chapter

from .access import AccessDecision, get_resolver

log = logging.getLogger("gating")


class ChapterAccessRequiredMixin:
    """Gate a DRF view on the chapter named in the URL.

    Runs after authentication so ``request.user`` is settled; sets
    ``self.chapter`` and ``self.access_decision`` for the handler.
    """

    chapter_kw = "chapter_id"

    def get_capabilities(self, request) -> AccessCapabilities:
        return AccessCapabilities.for_owner(request.user)

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        chapter = (
            Chapter.objects.select_related("lesson__module__course")
            .filter(pk=kwargs.get(self.chapter_kw))
            .first()
        )
        if chapter is None:
            raise NotFound("chapter_not_found")
        self.chapter = chapter
        course = chapter.lesson.module.course
        user = request.user if request.user.is_authenticated else None

        try:
            decision: AccessDecision = get_resolver().resolve(
                user,
                course.storefront_id,
                ContentRef.chapter(chapter.pk),
                capabilities=self.get_capabilities(request),
            )
        except InvalidInput:
            raise NotAuthenticated("authentication_required")
        self.access_decision = decision

        log.info(
            "gating_decision user=%s course=%s chapter=%s route=%s reason=%s status=%s",
            getattr(user, "pk", None),
            course.pk,
            chapter.pk,
            decision.route,
            decision.reason,
            decision.status,
        )
        if decision.has_access:
            return
        if decision.status == 404:
            raise NotFound("chapter_not_found")
        raise PermissionDenied(decision.reason or "forbidden")
