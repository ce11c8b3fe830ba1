"""Outbound email delivery for failure notifications"""

from typing import Any, Protocol

import httpx

from janitor.config.logging import get_logger
from janitor.core.exceptions import ConfigurationError
from janitor.infra.notifications.models import DeliveryResult

logger = get_logger(__name__)


class NotificationSender(Protocol):
    """Sends one message to one recipient."""

    async def send(self, recipient: str, subject: str, body: str) -> DeliveryResult: ...


class SendGridSender:
    """NotificationSender using the SendGrid v3 mail API"""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        api_url: str = "https://api.sendgrid.com/v3/mail/send",
        timeout: float = 10,
        client: httpx.AsyncClient | None = None,
    ):
        if not api_key:
            raise ConfigurationError("A SendGrid API key is required")

        self.api_url = api_url
        self.from_address = from_address
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.default_headers = {"Authorization": f"Bearer {api_key}"}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def _build_message(self, recipient: str, subject: str, body: str) -> dict[str, Any]:
        return {
            "personalizations": [{"to": [{"email": recipient}]}],
            "from": {"email": self.from_address},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        }

    async def send(self, recipient: str, subject: str, body: str) -> DeliveryResult:
        """Deliver a plain-text message; transport problems become failures."""
        try:
            response = await self.client.post(
                self.api_url,
                json=self._build_message(recipient, subject, body),
                headers=self.default_headers,
            )
        except httpx.HTTPError as e:
            return DeliveryResult.failure(f"{e.__class__.__name__}: {e}")

        if response.status_code >= 400:
            return DeliveryResult.failure(
                f"SendGrid error {response.status_code}: {_error_message(response)}"
            )

        logger.debug("notification.delivered", recipient=recipient)
        return DeliveryResult.success()


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or "Unknown error"

    errors = payload.get("errors", []) if isinstance(payload, dict) else []
    messages = [error.get("message", "") for error in errors if isinstance(error, dict)]
    return "; ".join(m for m in messages if m) or "Unknown error"
