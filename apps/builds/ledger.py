"""
Build upload ledger.

Stages manual builds per (release, stage, platform), reports platform
readiness and hands uploads out to consumers with an at-most-once guarantee.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.builds.errors import InvalidUpload, UploadAlreadyConsumed, UploadNotFound
from apps.builds.models import BuildUpload
from apps.orchestration.models import Stage

logger = logging.getLogger(__name__)


@dataclass
class PlatformReadiness:
    """Which of a release's platforms have an unused upload for a stage."""

    stage: str
    all_ready: bool = False
    uploaded_platforms: list[str] = field(default_factory=list)
    missing_platforms: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_response(self) -> dict[str, Any]:
        """Readiness keys as build upload callers read them."""
        return {
            "stage": self.stage,
            "allReady": self.all_ready,
            "uploadedPlatforms": self.uploaded_platforms,
            "missingPlatforms": self.missing_platforms,
        }


class BuildUploadLedger:
    """Service wrapping all BuildUpload mutations."""

    def validate(self, release, stage: str, platform: str) -> None:
        if stage not in Stage.values:
            raise InvalidUpload(f"Unknown stage: {stage}")
        if platform not in (release.platforms or []):
            raise InvalidUpload(
                f"Platform {platform} is not a target of release {release.version}. "
                f"Targets: {release.platforms}"
            )

    def stage_upload(
        self,
        release,
        stage: str,
        platform: str,
        artifact_path: str = "",
        testflight_number: str = "",
    ) -> BuildUpload:
        """
        Upsert the unused upload for (release, stage, platform).

        An existing unused upload is replaced in place. Consumed uploads are
        never touched; a fresh row is created next to them instead.
        """
        self.validate(release, stage, platform)
        values = {"artifact_path": artifact_path, "testflight_number": testflight_number}

        with transaction.atomic():
            existing = BuildUpload.objects.filter(
                release=release, stage=stage, platform=platform, is_used=False
            ).first()
            if existing is not None:
                replaced = BuildUpload.objects.filter(pk=existing.pk, is_used=False).update(
                    updated_at=timezone.now(), **values
                )
                if replaced:
                    existing.refresh_from_db()
                    logger.info(f"Replaced {platform} upload {existing.id} for {release.id}")
                    return existing

            try:
                with transaction.atomic():
                    upload = BuildUpload.objects.create(
                        release=release, stage=stage, platform=platform, **values
                    )
            except IntegrityError:
                # A concurrent writer staged the same platform first; replace theirs.
                upload = BuildUpload.objects.get(
                    release=release, stage=stage, platform=platform, is_used=False
                )
                for key, value in values.items():
                    setattr(upload, key, value)
                upload.save(update_fields=[*values.keys(), "updated_at"])

        logger.info(f"Staged {platform} upload {upload.id} for {release.id} ({stage})")
        return upload

    def available(self, release, stage: str | None = None):
        qs = BuildUpload.objects.filter(release=release, is_used=False)
        if stage:
            qs = qs.filter(stage=stage)
        return qs.order_by("platform")

    def get_available(self, release, stage: str, platform: str) -> BuildUpload | None:
        return self.available(release, stage).filter(platform=platform).first()

    def readiness(self, release, stage: str) -> PlatformReadiness:
        """Report which target platforms have an unused upload for ``stage``."""
        uploaded = set(self.available(release, stage).values_list("platform", flat=True))
        platforms = list(release.platforms or [])
        uploaded_platforms = [p for p in platforms if p in uploaded]
        missing = [p for p in platforms if p not in uploaded]
        return PlatformReadiness(
            stage=stage,
            all_ready=bool(platforms) and not missing,
            uploaded_platforms=uploaded_platforms,
            missing_platforms=missing,
        )

    def consume(self, upload: BuildUpload, task=None, cycle=None) -> BuildUpload:
        """Mark one upload used. Raises UploadAlreadyConsumed on a second attempt."""
        if not upload.mark_used(task=task, cycle=cycle):
            raise UploadAlreadyConsumed(f"Upload {upload.id} was already consumed")
        logger.info(f"Consumed {upload.platform} upload {upload.id}")
        return upload

    def consume_platform(self, release, stage: str, platform: str, task=None, cycle=None):
        upload = self.get_available(release, stage, platform)
        if upload is None:
            raise UploadNotFound(f"No {platform} upload staged for {stage}")
        return self.consume(upload, task=task, cycle=cycle)

    def consume_all(self, release, stage: str, task=None, cycle=None) -> list[BuildUpload]:
        """Consume one upload per target platform, all or nothing."""
        with transaction.atomic():
            return [
                self.consume_platform(release, stage, platform, task=task, cycle=cycle)
                for platform in release.platforms or []
            ]

    def delete_upload(self, release, stage: str, platform: str) -> None:
        """Delete the unused upload for a platform. Consumed uploads cannot be deleted."""
        deleted, _ = BuildUpload.objects.filter(
            release=release, stage=stage, platform=platform, is_used=False
        ).delete()
        if deleted:
            logger.info(f"Deleted {platform} upload for {release.id} ({stage})")
            return
        if BuildUpload.objects.filter(
            release=release, stage=stage, platform=platform, is_used=True
        ).exists():
            raise UploadAlreadyConsumed(f"{platform} upload for {stage} was already consumed")
        raise UploadNotFound(f"No {platform} upload staged for {stage}")

    def delete(self, upload: BuildUpload) -> None:
        """Delete a specific upload row, rejecting consumed ones."""
        deleted, _ = BuildUpload.objects.filter(pk=upload.pk, is_used=False).delete()
        if not deleted:
            raise UploadAlreadyConsumed(f"Upload {upload.id} was already consumed")
