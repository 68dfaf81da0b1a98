"""
DOCRELAY ← LINE Messaging API

Webhook payload models, signature verification, and the reply call.
"""

from __future__ import annotations

import base64
import hashlib
import hmac

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from docrelay.config_loader import LineConfig

MAX_TEXT_LENGTH = 5000


class ChannelError(Exception):
    pass


# ---------------------------------------------------------------------------
# Webhook payload
# ---------------------------------------------------------------------------

class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class EventSource(_Lenient):
    type: str = "user"
    user_id: str | None = Field(default=None, alias="userId")


class EventMessage(_Lenient):
    type: str
    id: str | None = None
    text: str | None = None


class WebhookEvent(_Lenient):
    type: str
    reply_token: str | None = Field(default=None, alias="replyToken")
    source: EventSource = Field(default_factory=EventSource)
    message: EventMessage | None = None

    @property
    def is_text_message(self) -> bool:
        return (
            self.type == "message"
            and self.message is not None
            and self.message.type == "text"
            and self.message.text is not None
            and bool(self.reply_token)
        )

    @property
    def user_key(self) -> str:
        return self.source.user_id or "unknown"


class WebhookPayload(_Lenient):
    destination: str | None = None
    events: list[WebhookEvent] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------

def compute_signature(channel_secret: str, body: bytes) -> str:
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class LineChannel:
    """Verifies inbound webhooks and sends replies."""

    def __init__(
        self,
        channel_secret: str,
        access_token: str,
        config: LineConfig,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.channel_secret = channel_secret
        self._http = httpx.Client(
            base_url=config.api_base,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )

    def verify_signature(self, body: bytes, signature: str | None) -> bool:
        if not signature:
            return False
        expected = compute_signature(self.channel_secret, body)
        return hmac.compare_digest(expected, signature)

    def reply(self, reply_token: str, text: str) -> None:
        """Send exactly one text message using the event's reply token."""
        if len(text) > MAX_TEXT_LENGTH:
            logger.warning(f"[LINE] Reply truncated from {len(text)} characters")
            text = text[:MAX_TEXT_LENGTH]

        response = self._http.post(
            "/message/reply",
            json={"replyToken": reply_token, "messages": [{"type": "text", "text": text}]},
        )
        if not response.is_success:
            raise ChannelError(f"LINE reply failed ({response.status_code}): {response.text}")
        logger.debug(f"[LINE] Replied ({len(text)} chars)")

    def close(self) -> None:
        self._http.close()
