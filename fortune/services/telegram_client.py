"""
Outbound channel client for the Telegram Bot API.

Only sendMessage is needed by the engagement core. Failures are raised as
ChannelSendError with an ErrorKind so the queue can decide about retries.
"""

from typing import Any

import httpx

from fortune.infrastructure.observability.logging import get_logger
from fortune.jobs.errors import ErrorKind, JobError

logger = get_logger(__name__)

TELEGRAM_MESSAGE_LIMIT = 4096


class ChannelSendError(JobError):
    """sendMessage failed."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        status_code: int | None = None,
        retry_after: int | None = None,
    ):
        super().__init__(message, kind=kind)
        self.status_code = status_code
        self.retry_after = retry_after


def classify_status(status_code: int) -> ErrorKind:
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code >= 500:
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


class TelegramClient:
    """Thin async wrapper over the Bot API using a shared httpx client."""

    def __init__(self, api_url: str, *, timeout: float = 15.0, client: httpx.AsyncClient | None = None):
        self.api_url = api_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send_message(
        self, chat_id: int | str, text: str, *, parse_mode: str | None = "HTML"
    ) -> dict[str, Any]:
        """
        Send a text message.

        Returns:
            The Telegram Message object

        Raises:
            ChannelSendError: on network failure or a non-ok API response
        """
        body: dict[str, Any] = {"chat_id": chat_id, "text": text[:TELEGRAM_MESSAGE_LIMIT]}
        if parse_mode:
            body["parse_mode"] = parse_mode

        try:
            response = await self._client.post(f"{self.api_url}/sendMessage", json=body)
        except httpx.TimeoutException as e:
            raise ChannelSendError(f"Telegram timeout: {e}", kind=ErrorKind.TRANSIENT) from e
        except httpx.HTTPError as e:
            raise ChannelSendError(f"Telegram network error: {e}", kind=ErrorKind.TRANSIENT) from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code != 200 or not data.get("ok", False):
            description = data.get("description") or response.text[:200]
            retry_after = (data.get("parameters") or {}).get("retry_after")
            kind = classify_status(response.status_code)
            logger.warning(
                "Telegram sendMessage failed",
                chat_id=chat_id,
                status_code=response.status_code,
                description=description,
                kind=kind.value,
            )
            raise ChannelSendError(
                f"Telegram API error {response.status_code}: {description}",
                kind=kind,
                status_code=response.status_code,
                retry_after=retry_after,
            )

        return data.get("result", {})
