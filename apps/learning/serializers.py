from __future__ import annotations

from rest_framework import serializers

from .models import ProgressFact


class ChapterProgressInputSerializer(serializers.Serializer):
    completed = serializers.BooleanField()
    time_spent_seconds = serializers.IntegerField(required=False, default=0, min_value=0)


class ProgressFactSerializer(serializers.ModelSerializer):
    chapter_id = serializers.IntegerField(read_only=True)
    course_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = ProgressFact
        fields = (
            "chapter_id",
            "course_id",
            "is_completed",
            "completed_at",
            "time_spent_seconds",
            "last_accessed_at",
        )
        read_only_fields = fields


class ProgressSummarySerializer(serializers.Serializer):
    course_id = serializers.IntegerField()
    percent = serializers.IntegerField(min_value=0, max_value=100)
    completed_chapters = serializers.IntegerField(min_value=0)
    total_chapters = serializers.IntegerField(min_value=0)
