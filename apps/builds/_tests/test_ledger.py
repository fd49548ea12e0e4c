"""Tests for the build upload ledger."""

import pytest
from django.test import TestCase

from apps.builds.errors import InvalidUpload, UploadAlreadyConsumed, UploadNotFound
from apps.builds.ledger import BuildUploadLedger
from apps.builds.models import BuildUpload
from apps.orchestration.models import Stage
from apps.releases._tests.factories import make_release
from apps.releases.models import Platform


class BuildUploadLedgerTests(TestCase):
    def setUp(self):
        self.release = make_release(manual_build_upload=True)
        self.ledger = BuildUploadLedger()

    def test_stage_upload_replaces_unused_row(self):
        first = self.ledger.stage_upload(
            self.release, Stage.REGRESSION, Platform.ANDROID, artifact_path="a.aab"
        )
        second = self.ledger.stage_upload(
            self.release, Stage.REGRESSION, Platform.ANDROID, artifact_path="b.aab"
        )

        assert first.id == second.id
        assert second.artifact_path == "b.aab"
        assert BuildUpload.objects.filter(release=self.release).count() == 1

    def test_platform_outside_release_targets_is_rejected(self):
        with pytest.raises(InvalidUpload):
            self.ledger.stage_upload(self.release, Stage.REGRESSION, Platform.WEB, artifact_path="x")

    def test_unknown_stage_is_rejected(self):
        with pytest.raises(InvalidUpload):
            self.ledger.stage_upload(self.release, "SOMEDAY", Platform.IOS, artifact_path="x")

    def test_readiness_reports_missing_platforms(self):
        self.ledger.stage_upload(self.release, Stage.REGRESSION, Platform.ANDROID, artifact_path="a")
        readiness = self.ledger.readiness(self.release, Stage.REGRESSION)

        assert readiness.all_ready is False
        assert readiness.uploaded_platforms == [Platform.ANDROID]
        assert readiness.missing_platforms == [Platform.IOS]

        self.ledger.stage_upload(self.release, Stage.REGRESSION, Platform.IOS, testflight_number="42")
        assert self.ledger.readiness(self.release, Stage.REGRESSION).all_ready is True

    def test_upload_is_consumed_at_most_once(self):
        upload = self.ledger.stage_upload(
            self.release, Stage.REGRESSION, Platform.ANDROID, artifact_path="a"
        )
        stale_copy = BuildUpload.objects.get(pk=upload.pk)

        self.ledger.consume(upload)
        with pytest.raises(UploadAlreadyConsumed):
            self.ledger.consume(stale_copy)

        upload.refresh_from_db()
        assert upload.is_used is True
        assert upload.used_at is not None

    def test_staging_after_consumption_creates_a_fresh_row(self):
        upload = self.ledger.stage_upload(
            self.release, Stage.REGRESSION, Platform.ANDROID, artifact_path="a"
        )
        self.ledger.consume(upload)
        fresh = self.ledger.stage_upload(
            self.release, Stage.REGRESSION, Platform.ANDROID, artifact_path="b"
        )

        assert fresh.id != upload.id
        upload.refresh_from_db()
        assert upload.artifact_path == "a"

    def test_consume_platform_without_upload_raises(self):
        with pytest.raises(UploadNotFound):
            self.ledger.consume_platform(self.release, Stage.REGRESSION, Platform.IOS)

    def test_consume_all_is_all_or_nothing(self):
        android = self.ledger.stage_upload(
            self.release, Stage.REGRESSION, Platform.ANDROID, artifact_path="a"
        )
        with pytest.raises(UploadNotFound):
            self.ledger.consume_all(self.release, Stage.REGRESSION)

        android.refresh_from_db()
        assert android.is_used is False

    def test_delete_unused_upload(self):
        self.ledger.stage_upload(self.release, Stage.REGRESSION, Platform.ANDROID, artifact_path="a")
        self.ledger.delete_upload(self.release, Stage.REGRESSION, Platform.ANDROID)

        assert not BuildUpload.objects.filter(release=self.release).exists()
        with pytest.raises(UploadNotFound):
            self.ledger.delete_upload(self.release, Stage.REGRESSION, Platform.ANDROID)

    def test_consumed_upload_cannot_be_deleted(self):
        upload = self.ledger.stage_upload(
            self.release, Stage.REGRESSION, Platform.ANDROID, artifact_path="a"
        )
        self.ledger.consume(upload)

        with pytest.raises(UploadAlreadyConsumed):
            self.ledger.delete_upload(self.release, Stage.REGRESSION, Platform.ANDROID)
        with pytest.raises(UploadAlreadyConsumed):
            self.ledger.delete(upload)
        assert BuildUpload.objects.filter(pk=upload.pk).exists()
