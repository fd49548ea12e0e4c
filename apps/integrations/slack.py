"""Slack incoming-webhook notification adapter."""

import json
import logging
import urllib.error
import urllib.request
from typing import Any

from apps.integrations.base import NotificationIntegration

logger = logging.getLogger(__name__)


class SlackNotificationProvider(NotificationIntegration):
    """
    Sends release notifications to a Slack incoming webhook.

    Config:
        webhook_url: ``https://hooks.slack.com/...`` URL (required).
        channel: Optional channel override.
        username: Optional bot username.
        timeout: Request timeout in seconds (default 30).
    """

    name = "slack"

    def validate_config(self) -> bool:
        url = self.config.get("webhook_url")
        return isinstance(url, str) and url.startswith("https://hooks.slack.com/")

    def build_payload(self, text: str, channel: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"text": text}
        channel = channel or self.config.get("channel")
        if channel:
            payload["channel"] = channel
        if self.config.get("username"):
            payload["username"] = self.config["username"]
        return payload

    def send_message(self, text: str, channel: str | None = None) -> dict[str, Any]:
        if not self.validate_config():
            return {
                "success": False,
                "error": "Invalid Slack configuration (valid webhook_url required)",
            }

        payload = self.build_payload(text, channel)
        request = urllib.request.Request(
            self.config["webhook_url"],
            data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self.config.get("timeout", 30)) as response:
                response_body = response.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8") if e.fp else str(e)
            logger.error(f"Slack HTTP error {e.code}: {error_body}")
            return {"success": False, "error": f"Slack API error ({e.code}): {error_body}"}
        except urllib.error.URLError as e:
            logger.error(f"Slack URL error: {e.reason}")
            return {"success": False, "error": f"Failed to connect to Slack: {e.reason}"}

        if response_body != "ok":
            logger.warning(f"Unexpected Slack response: {response_body}")
            return {"success": False, "error": f"Unexpected Slack response: {response_body}"}

        logger.info("Slack release notification sent")
        return {
            "success": True,
            "message_id": f"slack_{hash(text) & 0x7FFFFFFF:08x}",
            "metadata": {"channel": payload.get("channel", "default")},
        }
