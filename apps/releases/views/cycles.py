"""Regression cycle endpoints."""

import logging

from django.core.exceptions import ValidationError
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.releases.errors import CycleStateError
from apps.releases.models import RegressionCycle
from apps.releases.regression import RegressionCycleManager
from apps.releases.views._mixins import JSONResponseMixin, ReleaseLookupMixin

logger = logging.getLogger(__name__)


@method_decorator(csrf_exempt, name="dispatch")
class CycleListView(JSONResponseMixin, ReleaseLookupMixin, View):
    """GET /api/releases/<release_id>/regression/cycles"""

    def get(self, request, release_id: str):
        release = self.get_release(release_id)
        if release is None:
            return self.error_response(f"Release not found: {release_id}", status=404)
        return self.json_response(
            {"release_id": str(release.id), "cycles": RegressionCycleManager().cycle_summary(release)}
        )


@method_decorator(csrf_exempt, name="dispatch")
class AbandonCycleView(JSONResponseMixin, ReleaseLookupMixin, View):
    """
    Abandon a regression cycle.

    POST /api/releases/<release_id>/regression/cycles/<cycle_id>/abandon
    """

    def post(self, request, release_id: str, cycle_id: str):
        release = self.get_release(release_id)
        if release is None:
            return self.error_response(f"Release not found: {release_id}", status=404)
        try:
            cycle = RegressionCycle.objects.get(pk=cycle_id, release=release)
        except (RegressionCycle.DoesNotExist, ValidationError):
            return self.error_response(f"Cycle not found: {cycle_id}", status=404)

        try:
            cycle = RegressionCycleManager().abandon_cycle(cycle)
        except CycleStateError as e:
            return self.error_response(str(e), status=409)

        return self.json_response(
            {
                "success": True,
                "cycle": {"id": str(cycle.id), "number": cycle.number, "status": cycle.status},
            }
        )
