"""Regression approval endpoint."""

import logging

from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.releases.approval import ApprovalGate
from apps.releases.errors import ApprovalNotAllowed
from apps.releases.views._mixins import JSONResponseMixin, ReleaseLookupMixin

logger = logging.getLogger(__name__)


@method_decorator(csrf_exempt, name="dispatch")
class ApproveRegressionView(JSONResponseMixin, ReleaseLookupMixin, View):
    """
    Approve the regression stage of a release.

    GET  /api/releases/<release_id>/stages/regression/approve  - evaluate the gate
    POST /api/releases/<release_id>/stages/regression/approve  - approve

    Approval is rejected with 409 while any check is failing.
    """

    gate_class = ApprovalGate

    def get(self, request, release_id: str):
        release = self.get_release(release_id)
        if release is None:
            return self.error_response(f"Release not found: {release_id}", status=404)
        return self.json_response(self.gate_class().evaluate(release).to_dict())

    def post(self, request, release_id: str):
        release = self.get_release(release_id)
        if release is None:
            return self.error_response(f"Release not found: {release_id}", status=404)

        try:
            status = self.gate_class().approve(release)
        except ApprovalNotAllowed as e:
            logger.info(f"Approval rejected for release {release_id}: {e}")
            return self.error_response(
                str(e),
                status=409,
                approval=e.status.to_dict() if e.status is not None else None,
            )

        return self.json_response(
            {"success": True, "phase": release.phase, "approval": status.to_dict()}
        )
