# apps/content/views.py
from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.catalog.capabilities import AccessCapabilities
from apps.catalog.models import Storefront
from apps.catalog.refs import ContentRef
from apps.common.errors import InvalidInput

from .access import get_resolver
from .serializers import AccessDecisionSerializer, AccessQuerySerializer

log = logging.getLogger("gating")


class AccessCheckAPIView(APIView):
    """
    GET /api/access/?storefront=<slug>&kind=<kind>&id=<id>
    Anonymous callers are allowed through so free chapters can be checked;
    anything else requires a session.
    """

    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):
        query = AccessQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        data = query.validated_data

        storefront = Storefront.objects.filter(slug=data["storefront"]).first()
        if storefront is None:
            return Response({"detail": "storefront_not_found"}, status=status.HTTP_404_NOT_FOUND)

        user = request.user if request.user.is_authenticated else None
        try:
            ref = ContentRef.parse(data["kind"], data["id"])
            decision = get_resolver().resolve(
                user,
                storefront,
                ref,
                capabilities=AccessCapabilities.for_owner(user),
            )
        except InvalidInput as exc:
            if user is None:
                return Response({"detail": "authentication_required"}, status=status.HTTP_401_UNAUTHORIZED)
            return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        payload = AccessDecisionSerializer(
            {
                "has_access": decision.has_access,
                "route": decision.route,
                "grant": decision.grant,
                "reason": decision.reason,
            }
        ).data
        return Response(payload)
