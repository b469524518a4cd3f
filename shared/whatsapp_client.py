"""
WhatsApp Cloud API client used as the reminder NotificationGateway.

Only approved template messages are sent; free-form text outside the 24h
customer service window is rejected by Meta.
"""

import logging
from collections.abc import Sequence
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reminders.interfaces import SendResult
from shared.config import get_settings
from shared.phone_utils import mask_phone, phone_digits

logger = logging.getLogger(__name__)


class WhatsAppClient:
    """
    Client for the WhatsApp Cloud API messages endpoint.

    send() never raises for provider-side failures: the caller receives a
    SendResult with success=False and the provider's error message.
    """

    def __init__(
        self,
        phone_number_id: str | None = None,
        access_token: str | None = None,
    ):
        settings = get_settings()
        self.base_url = settings.WHATSAPP_API_BASE.rstrip("/")
        self.version = settings.WHATSAPP_API_VERSION
        self.phone_number_id = phone_number_id or settings.WHATSAPP_PHONE_NUMBER_ID
        self.access_token = access_token or settings.WHATSAPP_ACCESS_TOKEN
        self.language_code = settings.WHATSAPP_TEMPLATE_LANGUAGE
        self.timeout = settings.WHATSAPP_REQUEST_TIMEOUT_SECONDS

        self.headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/{self.version}/{self.phone_number_id}/messages"

    def build_template_payload(
        self, recipient: str, template_name: str, parameters: Sequence[str]
    ) -> dict[str, Any]:
        """Template message body with positional body parameters."""
        return {
            "messaging_product": "whatsapp",
            "to": phone_digits(recipient),
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": self.language_code},
                "components": [
                    {
                        "type": "body",
                        "parameters": [
                            {"type": "text", "text": str(value)} for value in parameters
                        ],
                    }
                ],
            },
        }

    # Only connection failures are retried: the request never reached Meta,
    # so retrying cannot produce a duplicate message.
    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
        reraise=True,
    )
    async def _post_message(self, payload: dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient() as client:
            return await client.post(
                self.messages_url,
                json=payload,
                headers=self.headers,
                timeout=self.timeout,
            )

    async def send(
        self, recipient: str, template_name: str, parameters: Sequence[str]
    ) -> SendResult:
        """
        Send a template message.

        Args:
            recipient: E.164 phone number
            template_name: Approved WhatsApp template name
            parameters: Positional body parameters ({{1}}, {{2}}, ...)

        Returns:
            SendResult with the provider message id (wamid) on success
        """
        payload = self.build_template_payload(recipient, template_name, parameters)

        try:
            response = await self._post_message(payload)
        except httpx.HTTPError as e:
            logger.error(
                f"WhatsApp request failed for {mask_phone(recipient)}: {e}",
                extra={"recipient": mask_phone(recipient)},
            )
            return SendResult(success=False, error=str(e))

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            error = data.get("error", {}) if isinstance(data, dict) else {}
            message = error.get("message") or f"HTTP {response.status_code}"
            logger.error(
                f"WhatsApp API error {response.status_code} for {mask_phone(recipient)}: "
                f"{message} (code={error.get('code')})",
                extra={"recipient": mask_phone(recipient)},
            )
            return SendResult(success=False, error=message)

        messages = (data.get("messages") or []) if isinstance(data, dict) else []
        message_id = messages[0].get("id") if messages else None
        if not message_id:
            logger.error(f"WhatsApp response without message id: {data}")
            return SendResult(success=False, error="Missing message id in provider response")

        logger.info(
            f"Template '{template_name}' sent to {mask_phone(recipient)}: {message_id}",
            extra={"recipient": mask_phone(recipient), "provider_message_id": message_id},
        )
        return SendResult(success=True, provider_message_id=message_id)
