"""
auth/notifications.py -- Fire-and-forget notification dispatch.

Account lifecycle events ("user created", "password changed", "password
reset requested") are handed to an external notification service, which
owns email/push delivery. This module only posts a JSON envelope to a
webhook.

Delivery guarantees: none. send() returns immediately; the HTTP POST runs on a
small thread pool. A failed or slow delivery is logged and dropped -- it must
never delay or fail registration, login or a password change.

When NOTIFICATION_WEBHOOK_URL is empty (local dev, tests), messages are
logged at WARNING and dropped, mirroring how the service behaves without a
configured message bus.

Security: payloads can contain reset tokens. They are never logged; only the
message type, message id and a redacted recipient are.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Protocol

import requests

from core.logging import redact_email

logger = logging.getLogger("procureauth.notify")

USER_CREATED = ("USER_CREATED", "notification.user.created")
PASSWORD_CHANGED = ("PASSWORD_CHANGED", "notification.password.changed")
PASSWORD_RESET = ("PASSWORD_RESET", "notification.password.reset")


class Notifier(Protocol):
    def send(self, event: tuple[str, str], data: dict) -> None: ...


class NotificationDispatcher:
    """Posts notification envelopes to a webhook on a background thread pool.

    Usage:
        notifier = NotificationDispatcher(settings.notification_webhook_url, service_name="auth-service")
        notifier.send(USER_CREATED, {"userId": uid, "email": email, "name": name})
        notifier.close()   # on shutdown; waits for in-flight deliveries
    """

    def __init__(
        self,
        webhook_url: str = "",
        *,
        service_name: str = "auth-service",
        timeout: float = 5.0,
        max_workers: int = 4,
        session: requests.Session | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.service_name = service_name
        self.timeout = timeout
        # Module-local session for connection pooling. Redirects are capped:
        # the webhook is a known internal endpoint.
        self._session = session or requests.Session()
        self._session.max_redirects = 3
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    @property
    def is_configured(self) -> bool:
        return bool(self.webhook_url)

    def build_message(self, event: tuple[str, str], data: dict) -> dict:
        message_type, subject = event
        return {
            "type": message_type,
            "subject": subject,
            "data": data,
            "message_id": f"{subject}-{uuid.uuid4()}",
            "properties": {
                "message_type": subject,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "service": self.service_name,
            },
        }

    def send(self, event: tuple[str, str], data: dict) -> None:
        """Queue a message for delivery and return immediately. Never raises."""
        message = self.build_message(event, data)
        if not self.is_configured:
            logger.warning("Notification webhook not configured, message not sent: %s", message["subject"])
            return
        try:
            self._executor.submit(self._deliver, message)
        except RuntimeError:
            # Executor already shut down (process is stopping).
            logger.warning("Notification dropped during shutdown: %s", message["subject"])

    def _deliver(self, message: dict) -> None:
        recipient = message["data"].get("email", "")
        try:
            resp = self._session.post(self.webhook_url, json=message, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error(
                "Failed to deliver notification %s to %s: %s",
                message["subject"],
                redact_email(recipient) if recipient else "-",
                e.__class__.__name__,
            )
            return
        logger.debug("Notification delivered: %s %s", message["subject"], message["message_id"])

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._session.close()
