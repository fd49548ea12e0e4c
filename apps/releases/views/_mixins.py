"""Shared mixins for release API views."""

import json
from typing import Any

from django.core.exceptions import ValidationError
from django.http import JsonResponse

from apps.releases.models import Release


class JSONResponseMixin:
    """Mixin for JSON responses."""

    def json_response(self, data: Any, status: int = 200, safe: bool = True) -> JsonResponse:
        return JsonResponse(data, status=status, safe=safe)

    def error_response(self, message: str, status: int = 400, **extra: Any) -> JsonResponse:
        return JsonResponse({"error": message, **extra}, status=status)

    def parse_json_body(self, request) -> dict | None:
        """Decode a JSON object body. Returns None when the body is not a JSON object."""
        try:
            body = json.loads(request.body) if request.body else {}
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        return body if isinstance(body, dict) else None


class ReleaseLookupMixin:
    """Resolve the release addressed by the URL."""

    def get_release(self, release_id: str, tenant_id: str | None = None) -> Release | None:
        filters = {"pk": release_id}
        if tenant_id is not None:
            filters["tenant_id"] = tenant_id
        try:
            return Release.objects.get(**filters)
        except (Release.DoesNotExist, ValidationError):
            return None
