"""
Error taxonomy shared by the proxy and the client.

Every error that can reach a caller carries the HTTP status it maps to and
the message that is safe to show outside the process. Upstream details
(response bodies, hostnames) stay in the logs, never in public_message.
"""

from __future__ import annotations


class SaathiError(Exception):
    """Base class. Subclasses set status_code and a default public message."""

    status_code: int = 500
    default_message: str = "Unknown error"

    def __init__(self, message: str | None = None):
        self.public_message = message or self.default_message
        super().__init__(self.public_message)

    def to_payload(self) -> dict:
        return {"error": self.public_message}


class ConfigurationError(SaathiError):
    """The upstream credential is missing. Fatal, never retried."""

    default_message = "LOVABLE_API_KEY is not configured"


class InvalidChatRequest(SaathiError):
    """The request body is not a usable {messages, language} object."""

    default_message = "Invalid chat request"


class UpstreamError(SaathiError):
    """The model gateway answered with a non-2xx status."""

    default_message = "AI gateway error"

    def __init__(self, message: str | None = None, upstream_status: int | None = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class UpstreamRateLimited(UpstreamError):
    status_code = 429
    default_message = "Rate limits exceeded, please try again later."


class UpstreamPaymentRequired(UpstreamError):
    status_code = 402
    default_message = "Payment required, please add funds."


class UpstreamGatewayError(UpstreamError):
    status_code = 500
    default_message = "AI gateway error"


class NetworkFailure(SaathiError):
    """A connect/read failure between client, proxy and gateway."""

    default_message = "Network failure"


class MalformedFrame(SaathiError):
    """A stream line that could not be decoded. Handled by the parser."""

    default_message = "Malformed stream frame"


class SessionBusy(SaathiError):
    """A reply is still streaming; the session accepts one submission at a time."""

    status_code = 409
    default_message = "A reply is still streaming"


def error_for_status(status: int, message: str | None = None) -> SaathiError:
    """Map an HTTP status (upstream or proxy) to the matching error."""
    if status == 429:
        return UpstreamRateLimited(message, upstream_status=status)
    if status == 402:
        return UpstreamPaymentRequired(message, upstream_status=status)
    return UpstreamGatewayError(message, upstream_status=status)
