"""
Monitoring signals for release orchestration.

App-agnostic monitoring surface used by the executor, polling service and
scheduler. Emits structured signals at every task and phase boundary.

Signals:
- release.task.started / succeeded / failed / awaiting
- release.task.duration (task dispatch timing)
- release.poll.transition
- release.lock.busy
- release.phase.advanced

Minimum tags on every signal:
- release_id
- tenant_id
- stage
- task_type / task_id / platform (task signals)
- attempt
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import statsd
from django.conf import settings
from django.utils.module_loading import import_string

logger = logging.getLogger("apps.orchestration.signals")


@dataclass
class SignalTags:
    """Required tags for all monitoring signals."""

    release_id: str
    tenant_id: str = ""
    stage: str = ""
    task_type: str = ""
    task_id: str = ""
    platform: str = ""
    attempt: int = 1
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_task(cls, task, **extra: Any) -> SignalTags:
        return cls(
            release_id=str(task.release_id),
            tenant_id=task.release.tenant_id,
            stage=task.stage,
            task_type=task.task_type,
            task_id=str(task.id),
            platform=task.platform,
            attempt=task.attempt,
            extra=extra,
        )

    @classmethod
    def for_release(cls, release, **extra: Any) -> SignalTags:
        return cls(
            release_id=str(release.id),
            tenant_id=release.tenant_id,
            stage=release.phase,
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        base = {
            "release_id": self.release_id,
            "tenant_id": self.tenant_id,
            "stage": self.stage,
            "task_type": self.task_type,
            "task_id": self.task_id,
            "platform": self.platform,
            "attempt": self.attempt,
        }
        base.update(self.extra)
        return base


class MonitoringBackend:
    """
    Abstract monitoring backend.

    RELEASES_MONITORING_BACKEND selects "logging", "statsd", or the dotted
    path of any subclass that overrides emit().
    """

    def emit(
        self,
        signal_name: str,
        tags: SignalTags,
        value: float | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Emit a monitoring signal."""
        raise NotImplementedError


class LoggingBackend(MonitoringBackend):
    """Default backend: structured logging."""

    def emit(
        self,
        signal_name: str,
        tags: SignalTags,
        value: float | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        data = {
            "signal": signal_name,
            "value": value,
            **tags.to_dict(),
            **(extra or {}),
        }
        logger.info(f"[SIGNAL] {signal_name}", extra={"signal_data": data})


class StatsdBackend(MonitoringBackend):
    """StatsD backend for metrics collection."""

    def __init__(self, host: str = "localhost", port: int = 8125, prefix: str = "releases"):
        self.host = host
        self.port = port
        self.prefix = prefix
        self._client = None

    @property
    def client(self) -> statsd.StatsClient:
        if self._client is None:
            self._client = statsd.StatsClient(self.host, self.port, prefix=self.prefix)
        return self._client

    def metric_name(self, signal_name: str, tags: SignalTags) -> str:
        # prefix.signal_name.stage.task_type
        stage = str(tags.stage) or "none"
        task_type = str(tags.task_type) or "release"
        return f"{signal_name}.{stage}.{task_type}"

    def emit(
        self,
        signal_name: str,
        tags: SignalTags,
        value: float | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        metric_name = self.metric_name(signal_name, tags)

        if value is None:
            self.client.incr(metric_name)
        elif signal_name.endswith(".duration"):
            self.client.timing(metric_name, value)
        elif signal_name.endswith("_count"):
            self.client.incr(metric_name, int(value))
        else:
            self.client.gauge(metric_name, value)


def get_monitoring_backend() -> MonitoringBackend:
    """Get configured monitoring backend."""
    backend_name = getattr(settings, "RELEASES_MONITORING_BACKEND", "logging")
    if backend_name == "logging":
        return LoggingBackend()
    if backend_name == "statsd":
        return StatsdBackend(
            host=getattr(settings, "STATSD_HOST", "localhost"),
            port=getattr(settings, "STATSD_PORT", 8125),
            prefix=getattr(settings, "STATSD_PREFIX", "releases"),
        )
    return import_string(backend_name)()


# Global backend instance (lazy initialized)
_backend: MonitoringBackend | None = None


def _get_backend() -> MonitoringBackend:
    global _backend
    if _backend is None:
        _backend = get_monitoring_backend()
    return _backend


def reset_backend() -> None:
    """Forget the cached backend so the next signal re-reads settings."""
    global _backend
    _backend = None


def emit_task_started(tags: SignalTags) -> None:
    """Emit signal when a task is claimed for dispatch."""
    _get_backend().emit("release.task.started", tags)


def emit_task_succeeded(tags: SignalTags, duration_ms: float) -> None:
    """Emit signal when a task completes successfully."""
    _get_backend().emit("release.task.succeeded", tags, extra={"duration_ms": duration_ms})
    _get_backend().emit("release.task.duration", tags, value=duration_ms)


def emit_task_awaiting(tags: SignalTags, external_id: str, duration_ms: float) -> None:
    """Emit signal when a task hands off to an external asynchronous job."""
    _get_backend().emit(
        "release.task.awaiting",
        tags,
        extra={"external_id": external_id, "duration_ms": duration_ms},
    )
    _get_backend().emit("release.task.duration", tags, value=duration_ms)


def emit_task_failed(
    tags: SignalTags,
    error_type: str,
    error_message: str,
    duration_ms: float = 0.0,
) -> None:
    """Emit signal when a task fails."""
    _get_backend().emit(
        "release.task.failed",
        tags,
        extra={
            "error_type": error_type,
            "error_message": error_message,
            "duration_ms": duration_ms,
        },
    )
    _get_backend().emit("release.task.failure_count", tags, value=1)


def emit_poll_transition(tags: SignalTags, from_status: str, to_status: str) -> None:
    """Emit signal when a polling pass moves a task."""
    _get_backend().emit(
        "release.poll.transition",
        tags,
        extra={"from_status": from_status, "to_status": to_status},
    )


def emit_lock_busy(tags: SignalTags) -> None:
    """Emit signal when a release is skipped because its lock is held."""
    _get_backend().emit("release.lock.busy", tags)


def emit_phase_advanced(tags: SignalTags, from_phase: str, to_phase: str) -> None:
    """Emit signal when a release moves to its next phase."""
    _get_backend().emit(
        "release.phase.advanced",
        tags,
        extra={"from_phase": from_phase, "to_phase": to_phase},
    )
