"""Client for the notification dispatcher (email / push fan-out lives behind it)."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
from typing import Any, Dict, List, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class NotifierError(RuntimeError):
    """Raised when the dispatcher rejects or cannot receive a message."""


@dataclass
class Notification:
    recipient_id: str
    template: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"recipient_id": self.recipient_id, "template": self.template, "data": self.data}


class Notifier(Protocol):
    def send(self, notification: Notification) -> None:
        ...


class NotifierClient:
    """Posts notifications to the dispatcher's REST API."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def send(self, notification: Notification) -> None:
        url = f"{self._base_url}/messages"
        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = client.post(url, json=notification.to_dict())
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                logger.error(
                    "Notifier API error %s for template %s: %s",
                    exc.response.status_code,
                    notification.template,
                    exc.response.text[:500],
                )
                raise NotifierError(
                    f"Notifier responded with status {exc.response.status_code}"
                ) from exc
            except httpx.RequestError as exc:
                logger.error("Notifier request failure for %s: %s", notification.template, str(exc))
                raise NotifierError("Failed to reach notifier") from exc


class FakeNotifierClient(NotifierClient):
    """Records notifications in memory instead of sending them."""

    def __init__(self, fail_with: Optional[Exception] = None) -> None:
        super().__init__(base_url="http://notifier.invalid")
        self.sent: List[Notification] = []
        self.fail_with = fail_with
        self._lock = threading.Lock()

    def send(self, notification: Notification) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            self.sent.append(notification)
        logger.debug(
            "Fake notification recorded",
            extra={"recipient_id": notification.recipient_id, "template": notification.template},
        )
