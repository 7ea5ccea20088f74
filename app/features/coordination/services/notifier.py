"""
Notifier: outbound email for proposal and response events.

Delivery is a side effect outside the consistency core. The façade only
calls it after a transaction has committed, through NotificationDispatcher,
which runs each delivery as a tracked task and logs failures instead of
raising them.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from app.config import settings
from app.features.coordination.services.email_templates import NotificationKind, render
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class NotificationError(Exception):
    """Delivery failed after all retries."""

    def __init__(self, message: str, status_code: int | None = None, attempts: int = 0):
        super().__init__(message)
        self.status_code = status_code
        self.attempts = attempts


@dataclass(slots=True)
class DeliveryReceipt:
    message_id: str
    recipient: str
    kind: NotificationKind
    attempts: int = 1


class Notifier(Protocol):
    async def send(
        self, recipient_address: str, template_kind: NotificationKind, payload: dict[str, Any]
    ) -> DeliveryReceipt: ...

    async def close(self) -> None: ...


class HttpEmailNotifier:
    """
    Sends email through an HTTP email API (JSON POST with bearer auth).

    Makes one attempt plus up to max_retries retries. Connection errors and
    429/5xx are retried with exponential backoff:
    backoff_seconds * 2 ** (attempt - 1).
    """

    def __init__(
        self,
        api_url: str,
        api_key: str | None = None,
        *,
        sender: str | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self._api_url = api_url
        self._api_key = api_key
        self._sender = sender or settings.EMAIL_FROM
        self._max_retries = max_retries if max_retries is not None else settings.NOTIFY_MAX_RETRIES
        self._backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.NOTIFY_BACKOFF_SECONDS
        )
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.NOTIFY_TIMEOUT_SECONDS),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def send(
        self, recipient_address: str, template_kind: NotificationKind, payload: dict[str, Any]
    ) -> DeliveryReceipt:
        email = render(template_kind, payload)
        body = {
            "from": self._sender,
            "to": [recipient_address],
            "subject": email.subject,
            "html": email.html,
            "text": email.text,
            "tags": [{"name": "kind", "value": NotificationKind(template_kind).value}],
        }

        max_attempts = 1 + max(self._max_retries, 0)
        last_error: str | None = None
        last_status: int | None = None
        attempt = 0
        while attempt < max_attempts:
            attempt += 1
            try:
                response = await self._client.post(self._api_url, json=body, headers=self._headers())
            except httpx.RequestError as e:
                last_error, last_status = str(e), None
            else:
                if response.is_success:
                    data = response.json() if response.text else {}
                    message_id = str(data.get("id") or data.get("message_id") or uuid.uuid4())
                    logger.info(
                        "Notification delivered",
                        kind=NotificationKind(template_kind).value,
                        recipient=recipient_address,
                        message_id=message_id,
                        attempts=attempt,
                    )
                    return DeliveryReceipt(
                        message_id=message_id,
                        recipient=recipient_address,
                        kind=NotificationKind(template_kind),
                        attempts=attempt,
                    )
                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                last_status = response.status_code
                if response.status_code not in RETRY_STATUS_CODES:
                    break

            if attempt < max_attempts:
                backoff = self._backoff_seconds * (2 ** (attempt - 1))
                logger.debug(
                    "Email API retrying request",
                    attempt=attempt,
                    status_code=last_status,
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)

        raise NotificationError(
            f"Email delivery to {recipient_address} failed: {last_error}",
            status_code=last_status,
            attempts=attempt,
        )


class LogOnlyNotifier:
    """Renders and logs emails instead of sending them (no email API configured)."""

    async def send(
        self, recipient_address: str, template_kind: NotificationKind, payload: dict[str, Any]
    ) -> DeliveryReceipt:
        email = render(template_kind, payload)
        message_id = f"log-{uuid.uuid4()}"
        logger.info(
            "Notification logged (email API not configured)",
            kind=NotificationKind(template_kind).value,
            recipient=recipient_address,
            subject=email.subject,
            message_id=message_id,
        )
        return DeliveryReceipt(
            message_id=message_id, recipient=recipient_address, kind=NotificationKind(template_kind)
        )

    async def close(self) -> None:
        return None


def build_notifier() -> Notifier:
    if settings.EMAIL_API_URL:
        return HttpEmailNotifier(settings.EMAIL_API_URL, settings.EMAIL_API_KEY)
    logger.warning("EMAIL_API_URL not set; notifications will only be logged")
    return LogOnlyNotifier()


class NotificationDispatcher:
    """
    Runs deliveries after commit without letting them fail the caller.

    In background mode each delivery is an asyncio task kept in a set until
    it finishes; drain() waits for all of them (used at shutdown). Inline mode
    awaits each delivery in place.
    """

    def __init__(self, notifier: Notifier, *, background: bool = True):
        self._notifier = notifier
        self._background = background
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def submit(
        self, recipient_address: str, kind: NotificationKind, payload: dict[str, Any]
    ) -> None:
        if not self._background:
            await self._deliver(recipient_address, kind, payload)
            return

        task = asyncio.create_task(self._deliver(recipient_address, kind, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(
        self, recipient_address: str, kind: NotificationKind, payload: dict[str, Any]
    ) -> DeliveryReceipt | None:
        try:
            return await self._notifier.send(recipient_address, kind, payload)
        except Exception as e:
            logger.error(
                "Notification failed",
                kind=NotificationKind(kind).value,
                recipient=recipient_address,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self._notifier.close()
