"""
Views for the builds app.

Manual build uploads are staged per (release, stage, platform) and consumed
by the orchestration engine exactly once.
"""

import logging

from django.core.files.storage import default_storage
from django.http.multipartparser import MultiPartParserError
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from apps.builds.errors import InvalidUpload, UploadAlreadyConsumed, UploadNotFound
from apps.builds.ledger import BuildUploadLedger
from apps.orchestration.models import parse_stage
from apps.releases.models import Platform
from apps.releases.views._mixins import JSONResponseMixin, ReleaseLookupMixin

logger = logging.getLogger(__name__)


class BuildLedgerMixin(JSONResponseMixin, ReleaseLookupMixin):
    """Shared lookup and error mapping for build upload views."""

    ledger_class = BuildUploadLedger

    def get_ledger(self) -> BuildUploadLedger:
        return self.ledger_class()

    def ledger_error_response(self, exc: Exception):
        if isinstance(exc, InvalidUpload):
            return self.error_response(str(exc), status=400)
        if isinstance(exc, UploadNotFound):
            return self.error_response(str(exc), status=404)
        return self.error_response(str(exc), status=409)

    def upload_response(self, release, stage: str, upload, status: int = 200):
        readiness = self.get_ledger().readiness(release, stage)
        return self.json_response(
            {
                "success": True,
                "uploadId": str(upload.id),
                "upload": upload.to_dict(),
                **readiness.to_response(),
            },
            status=status,
        )


@method_decorator(csrf_exempt, name="dispatch")
class BuildUploadView(BuildLedgerMixin, View):
    """
    Stage, inspect or remove a manual build upload.

    GET    /api/releases/<release_id>/stages/<stage>/builds/<platform>
    PUT    /api/releases/<release_id>/stages/<stage>/builds/<platform>  (multipart, field "artifact")
    POST   same as PUT, for clients that cannot send multipart PUT
    DELETE /api/releases/<release_id>/stages/<stage>/builds/<platform>
    """

    artifact_field = "artifact"

    def get(self, request, release_id: str, stage: str, platform: str):
        release = self.get_release(release_id)
        if release is None:
            return self.error_response(f"Release not found: {release_id}", status=404)
        stage, platform = parse_stage(stage) or stage, platform.upper()
        upload = self.get_ledger().get_available(release, stage, platform)
        if upload is None:
            return self.error_response(f"No {platform} upload staged for {stage}", status=404)
        return self.upload_response(release, stage, upload)

    def put(self, request, release_id: str, stage: str, platform: str):
        # Django only parses multipart bodies for POST.
        try:
            request.POST, request._files = request.parse_file_upload(request.META, request)
        except MultiPartParserError as e:
            return self.error_response(f"Invalid multipart body: {e}")
        return self._stage(request, release_id, stage, platform)

    def post(self, request, release_id: str, stage: str, platform: str):
        return self._stage(request, release_id, stage, platform)

    def delete(self, request, release_id: str, stage: str, platform: str):
        release = self.get_release(release_id)
        if release is None:
            return self.error_response(f"Release not found: {release_id}", status=404)
        stage, platform = parse_stage(stage) or stage, platform.upper()
        try:
            self.get_ledger().delete_upload(release, stage, platform)
        except (UploadNotFound, UploadAlreadyConsumed) as e:
            return self.ledger_error_response(e)
        return self.json_response(
            {"success": True, **self.get_ledger().readiness(release, stage).to_response()}
        )

    def _stage(self, request, release_id: str, stage: str, platform: str):
        release = self.get_release(release_id)
        if release is None:
            return self.error_response(f"Release not found: {release_id}", status=404)
        stage, platform = parse_stage(stage) or stage, platform.upper()

        artifact = request.FILES.get(self.artifact_field)
        if artifact is None:
            return self.error_response(f"Missing file field '{self.artifact_field}'")

        ledger = self.get_ledger()
        try:
            ledger.validate(release, stage, platform)
        except InvalidUpload as e:
            return self.ledger_error_response(e)

        path = default_storage.save(
            f"builds/{release.id}/{stage}/{platform}/{artifact.name}", artifact
        )
        try:
            upload = ledger.stage_upload(release, stage, platform, artifact_path=path)
        except (InvalidUpload, UploadAlreadyConsumed) as e:
            default_storage.delete(path)
            return self.ledger_error_response(e)

        logger.info(f"Stored {platform} artifact for release {release.id} at {path}")
        return self.upload_response(release, stage, upload, status=201)


@method_decorator(csrf_exempt, name="dispatch")
class VerifyTestflightView(BuildLedgerMixin, View):
    """
    Stage an iOS build that was uploaded straight to TestFlight.

    POST /api/releases/<release_id>/stages/<stage>/builds/ios/verify-testflight

    Request body:
    {
        "testflightBuildNumber": "1234"
    }
    """

    def post(self, request, release_id: str, stage: str):
        release = self.get_release(release_id)
        if release is None:
            return self.error_response(f"Release not found: {release_id}", status=404)

        body = self.parse_json_body(request)
        if body is None:
            return self.error_response("Invalid JSON body")
        build_number = str(body.get("testflightBuildNumber") or "").strip()
        if not build_number:
            return self.error_response("testflightBuildNumber is required")

        stage = parse_stage(stage) or stage
        try:
            upload = self.get_ledger().stage_upload(
                release, stage, Platform.IOS, testflight_number=build_number
            )
        except (InvalidUpload, UploadAlreadyConsumed) as e:
            return self.ledger_error_response(e)
        return self.upload_response(release, stage, upload, status=201)
