from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.common.errors import InvalidInput, NotFoundError
from apps.content.mixins import ChapterAccessRequiredMixin

from .serializers import ChapterProgressInputSerializer, ProgressFactSerializer, ProgressSummarySerializer
from .services.progress import get_progress_aggregator

log = logging.getLogger("learning.progress")


def _error_response(exc: Exception) -> Response:
    if isinstance(exc, NotFoundError):
        return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
    return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)


class ChapterProgressAPIView(ChapterAccessRequiredMixin, APIView):
    """
    POST /api/learning/chapters/<id>/progress/
    Body: {"completed": bool, "time_spent_seconds": int}
    Same gating as the chapter itself: no access, no progress.
    """

    def post(self, request, chapter_id: int):
        payload = ChapterProgressInputSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        try:
            fact = get_progress_aggregator().record_chapter_completion(
                request.user,
                self.chapter.pk,
                payload.validated_data["completed"],
                payload.validated_data["time_spent_seconds"],
            )
        except (InvalidInput, NotFoundError) as exc:
            return _error_response(exc)
        return Response(ProgressFactSerializer(fact).data, status=status.HTTP_200_OK)


class CourseProgressAPIView(APIView):
    """GET /api/learning/courses/<id>/progress/"""

    def get(self, request, course_id: int):
        try:
            summary = get_progress_aggregator().course_progress(request.user, course_id)
        except (InvalidInput, NotFoundError) as exc:
            return _error_response(exc)
        return Response(ProgressSummarySerializer({"course_id": course_id, **summary.as_dict()}).data)


class CourseOutlineAPIView(APIView):
    """GET /api/learning/courses/<id>/outline/"""

    def get(self, request, course_id: int):
        try:
            outline = get_progress_aggregator().course_outline(request.user, course_id)
        except (InvalidInput, NotFoundError) as exc:
            return _error_response(exc)
        return Response(outline)


class MyCoursesProgressAPIView(APIView):
    """GET /api/learning/courses/"""

    def get(self, request):
        try:
            rows = get_progress_aggregator().user_courses_progress(request.user)
        except InvalidInput as exc:
            return _error_response(exc)
        return Response({"results": rows})
