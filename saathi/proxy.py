"""
Proxy: the server side of Saathi.
Takes the client's whole conversation, puts the language's system prompt
in front of it, forwards it to the model gateway with stream=true and
hands back the live SSE body. Holds no state between requests.
"""

import logging

from saathi.config import get_config
from saathi.errors import ConfigurationError, InvalidChatRequest
from saathi.gateway import UpstreamGateway, UpstreamStream
from saathi.languages import get_profile, normalize_language

logger = logging.getLogger(__name__)

ALLOWED_ROLES = ("user", "assistant")


def validate_messages(messages) -> list[dict]:
    """Check the shape of the incoming history; return it unchanged."""
    if not isinstance(messages, list):
        raise InvalidChatRequest("messages must be a list")
    for i, msg in enumerate(messages):
        if not isinstance(msg, dict):
            raise InvalidChatRequest(f"messages[{i}] must be an object")
        if msg.get("role") not in ALLOWED_ROLES:
            raise InvalidChatRequest(f"messages[{i}].role must be 'user' or 'assistant'")
        if not isinstance(msg.get("content"), str):
            raise InvalidChatRequest(f"messages[{i}].content must be a string")
    return messages


class ChatProxy:
    """Stateless handler between the chat client and the model gateway."""

    def __init__(self, gateway: UpstreamGateway, default_language: str = "en"):
        self.gateway = gateway
        self.default_language = default_language

    @classmethod
    def from_config(cls, gateway: UpstreamGateway | None = None) -> "ChatProxy":
        cfg = get_config()
        return cls(
            gateway=gateway or UpstreamGateway.from_config(),
            default_language=cfg.get("languages", {}).get("default", "en"),
        )

    def _language(self, payload: dict) -> str:
        return normalize_language(payload.get("language"), default=self.default_language)

    def build_messages(self, payload: dict) -> list[dict]:
        """System prompt first, then the client's history in its own order."""
        if not isinstance(payload, dict):
            raise InvalidChatRequest("request body must be a JSON object")
        history = validate_messages(payload.get("messages"))
        profile = get_profile(self._language(payload))
        return [profile.system_message(), *history]

    async def open_chat_stream(self, payload: dict) -> UpstreamStream:
        """
        Forward one chat request upstream.
        Exactly one gateway request per call; errors propagate as SaathiError
        subclasses for the HTTP layer to turn into {error} bodies.
        """
        # Checked before the body is looked at.
        if not self.gateway.configured:
            raise ConfigurationError(f"{self.gateway.api_key_env} is not configured")
        messages = self.build_messages(payload)
        logger.debug(
            "Forwarding %d messages (language=%s) to %s",
            len(messages) - 1, self._language(payload), self.gateway.model,
        )
        return await self.gateway.open_stream(messages)
