from __future__ import annotations

from rest_framework import serializers

from apps.billing.models import Grant
from apps.catalog.refs import ContentKind


class AccessQuerySerializer(serializers.Serializer):
    storefront = serializers.SlugField(max_length=120)
    kind = serializers.ChoiceField(choices=ContentKind.choices)
    id = serializers.IntegerField(min_value=1)


class GrantSerializer(serializers.ModelSerializer):
    class Meta:
        model = Grant
        fields = (
            "id",
            "route",
            "status",
            "content_kind",
            "content_id",
            "amount",
            "currency",
            "created_at",
            "last_accessed_at",
            "access_count",
        )
        read_only_fields = fields


class AccessDecisionSerializer(serializers.Serializer):
    has_access = serializers.BooleanField()
    route = serializers.CharField(allow_null=True)
    grant = GrantSerializer(allow_null=True)
    reason = serializers.CharField(allow_blank=True)
