"""
Upstream model gateway — the hosted chat-completion API behind the proxy.

Opens one streaming completion per call and hands back the live response
so the proxy can relay its body without buffering it. Non-2xx answers are
read, logged and turned into the matching UpstreamError before anything
reaches the caller.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

import httpx

from saathi.config import get_config
from saathi.errors import ConfigurationError, NetworkFailure, error_for_status

logger = logging.getLogger(__name__)


class UpstreamStream:
    """
    An open streaming response from the gateway.
    Owns its HTTP client; both are closed once the body is exhausted,
    the relay fails, or aclose() is called.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response):
        self._client = client
        self._response = response
        self._closed = False

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self._response.headers

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield body chunks as they arrive, untouched. Upstream read errors propagate."""
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as e:
            # Headers are already sent; the server aborts the chunked body.
            logger.error("Upstream stream broke mid-relay: %s", e)
            raise
        finally:
            await self.aclose()

    async def aclose(self):
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()
        await self._client.aclose()


class UpstreamGateway:
    """Client for an OpenAI-compatible streaming chat-completions endpoint."""

    def __init__(
        self,
        url: str,
        model: str,
        api_key: str = "",
        api_key_env: str = "LOVABLE_API_KEY",
        connect_timeout: float = 10,
        idle_timeout: float = 60,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url
        self.model = model
        self.api_key = api_key
        self.api_key_env = api_key_env
        self.connect_timeout = connect_timeout
        self.idle_timeout = idle_timeout
        self._transport = transport

    @classmethod
    def from_config(cls, transport: httpx.AsyncBaseTransport | None = None) -> "UpstreamGateway":
        """Create a gateway from config.yaml settings."""
        g_cfg = get_config()["gateway"]
        return cls(
            url=g_cfg["url"],
            model=g_cfg["model"],
            api_key=g_cfg.get("api_key", ""),
            api_key_env=g_cfg.get("api_key_env", "LOVABLE_API_KEY"),
            connect_timeout=g_cfg.get("connect_timeout", 10),
            idle_timeout=g_cfg.get("idle_timeout", 60),
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _timeout(self) -> httpx.Timeout:
        # read= bounds the gap between two chunks, not the whole stream
        return httpx.Timeout(
            connect=self.connect_timeout,
            read=self.idle_timeout,
            write=self.connect_timeout,
            pool=self.connect_timeout,
        )

    def build_body(self, messages: list[dict]) -> dict:
        return {"model": self.model, "messages": messages, "stream": True}

    async def open_stream(self, messages: list[dict]) -> UpstreamStream:
        """
        Send one streaming completion request.
        Returns the open stream on 2xx; raises ConfigurationError,
        UpstreamRateLimited, UpstreamPaymentRequired, UpstreamGatewayError
        or NetworkFailure otherwise. No retries.
        """
        if not self.configured:
            raise ConfigurationError(f"{self.api_key_env} is not configured")

        client = httpx.AsyncClient(timeout=self._timeout(), transport=self._transport)
        request = client.build_request(
            "POST", self.url, headers=self._headers(), json=self.build_body(messages),
        )
        try:
            resp = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            logger.warning("Gateway request failed: %s", e)
            raise NetworkFailure(str(e) or e.__class__.__name__) from e
        except BaseException:
            await client.aclose()
            raise

        if resp.is_success:
            return UpstreamStream(client, resp)

        try:
            body = (await resp.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError:
            body = ""
        finally:
            await resp.aclose()
            await client.aclose()

        if resp.status_code in (402, 429):
            logger.warning("AI gateway returned %d", resp.status_code)
        else:
            logger.error("AI gateway error: %d %s", resp.status_code, body[:2000])
        raise error_for_status(resp.status_code)
