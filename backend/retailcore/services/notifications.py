# Overview: Outbound email/SMS collaborators used by the automation jobs.

from __future__ import annotations

from typing import Protocol

import httpx
from flask import current_app


class NotificationError(RuntimeError):
    """A notification could not be delivered (after the inline retry)."""


class Notifier(Protocol):
    def send_email(self, to: str, subject: str, message: str) -> None: ...

    def send_sms(self, to: str, message: str) -> None: ...


class LogNotifier:
    """Writes notifications to the app log. Used when no webhook is configured."""

    def send_email(self, to: str, subject: str, message: str) -> None:
        current_app.logger.info("email to=%s subject=%r: %s", to, subject, message)

    def send_sms(self, to: str, message: str) -> None:
        current_app.logger.info("sms to=%s: %s", to, message)


class WebhookNotifier:
    """
    Posts each notification as JSON to a relay in front of the email/SMS
    provider:

        {"channel": "email", "to": ..., "subject": ..., "message": ...}
        {"channel": "sms", "to": ..., "message": ...}

    Any transport error or non-2xx answer raises NotificationError.
    """

    def __init__(self, url: str, *, timeout: float = 10.0, client: httpx.Client | None = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    def _post(self, payload: dict) -> None:
        try:
            if self._client is not None:
                response = self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"{payload['channel']} to {payload['to']} failed: {exc}") from exc

    def send_email(self, to: str, subject: str, message: str) -> None:
        self._post({"channel": "email", "to": to, "subject": subject, "message": message})

    def send_sms(self, to: str, message: str) -> None:
        self._post({"channel": "sms", "to": to, "message": message})


def build_notifier(config) -> Notifier:
    """Webhook notifier when a relay URL is configured, log-only otherwise."""
    if config.notification_webhook_url:
        return WebhookNotifier(config.notification_webhook_url, timeout=config.notification_timeout_seconds)
    return LogNotifier()


def send_with_retry(send, *args, attempts: int = 2) -> None:
    """
    Call a notifier method, retrying a failure once.

    Raises NotificationError when every attempt failed.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            send(*args)
            return
        except Exception as exc:  # any provider failure counts as a failed send
            last_exc = exc
            current_app.logger.warning("notification attempt %s/%s failed: %s", attempt + 1, attempts, exc)
    raise NotificationError(str(last_exc)) from last_exc
