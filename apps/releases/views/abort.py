"""Release abort endpoint."""

from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.releases.errors import ReleaseAbortError
from apps.releases.services import abort_release
from apps.releases.views._mixins import JSONResponseMixin, ReleaseLookupMixin


@method_decorator(csrf_exempt, name="dispatch")
class AbortReleaseView(JSONResponseMixin, ReleaseLookupMixin, View):
    """
    Abort a release that has not started kickoff yet.

    POST /api/releases/<release_id>/abort
    """

    def post(self, request, release_id: str):
        release = self.get_release(release_id)
        if release is None:
            return self.error_response(f"Release not found: {release_id}", status=404)
        try:
            release = abort_release(release)
        except ReleaseAbortError as e:
            return self.error_response(str(e), status=409)
        return self.json_response(
            {
                "success": True,
                "release_id": str(release.id),
                "aborted_at": release.aborted_at.isoformat(),
            }
        )
