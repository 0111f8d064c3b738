"""
ChatSession — sends the transcript to the proxy and streams the reply into it.

One submission at a time: while a reply is streaming, `busy` is True and a
second submit() raises SessionBusy (UIs disable their input instead).
cancel() aborts the request in flight and releases the connection; the
partial reply is kept as-is and no fallback is added.

On any failure (network, non-2xx from the proxy) the open reply is closed,
a separate localized fallback message is appended, and the user is told
through notify(severity, text).
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

import httpx

from saathi.client.storage import LocalStorage
from saathi.client.stream import iter_deltas
from saathi.client.transcript import Message, Transcript
from saathi.config import get_config
from saathi.errors import (
    NetworkFailure,
    SaathiError,
    SessionBusy,
    UpstreamPaymentRequired,
    UpstreamRateLimited,
    error_for_status,
)
from saathi.languages import get_profile, normalize_language

logger = logging.getLogger(__name__)

Notify = Callable[[str, str], None]


def _log_notify(severity: str, text: str):
    level = logging.WARNING if severity == "warning" else logging.ERROR
    logger.log(level, "%s", text)


def classify_failure(error: Exception) -> tuple[str, str]:
    """(notification kind, severity) for a failed submission."""
    if isinstance(error, UpstreamRateLimited):
        return "rate_limited", "warning"
    if isinstance(error, UpstreamPaymentRequired):
        return "payment_required", "error"
    return "generic", "error"


class ChatSession:
    def __init__(
        self,
        transcript: Transcript,
        proxy_url: str,
        idle_timeout: float = 60,
        connect_timeout: float = 10,
        notify: Notify | None = None,
        headers: dict | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.transcript = transcript
        self.proxy_url = proxy_url
        self.idle_timeout = idle_timeout
        self.connect_timeout = connect_timeout
        self.notify = notify or _log_notify
        self.headers = headers or {}
        self._transport = transport
        self._inflight: asyncio.Task | None = None
        self._cancel_requested = False

    @classmethod
    def from_config(cls, notify: Notify | None = None, storage_path: str | None = None) -> "ChatSession":
        """Build a session (and load its transcript) from config.yaml's client section."""
        c_cfg = get_config()["client"]
        storage = LocalStorage(storage_path or c_cfg["storage_path"])
        transcript = Transcript.load(
            storage,
            key=c_cfg.get("storage_key", "saathi-chat-history"),
            language=c_cfg.get("language", "en"),
        )
        return cls(
            transcript,
            proxy_url=c_cfg["proxy_url"],
            idle_timeout=c_cfg.get("idle_timeout", 60),
            notify=notify,
            headers=c_cfg.get("headers") or {},
        )

    # ── State ─────────────────────────────────────────────────────────────

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    @property
    def language(self) -> str:
        return self.transcript.language

    def set_language(self, code: str) -> str:
        self.transcript.language = normalize_language(code)
        return self.transcript.language

    # ── Submission ────────────────────────────────────────────────────────

    async def submit(self, text: str) -> Message | None:
        """
        Send one user message and stream the reply into the transcript.
        Returns the reply message, or None when nothing was sent or the
        request failed (the fallback is in the transcript by then).
        """
        if not text or not text.strip():
            return None
        if self.busy:
            raise SessionBusy()

        self.transcript.append_user(text.strip())
        history = self.transcript.history()
        reply = self.transcript.open_assistant()

        self._cancel_requested = False
        task = asyncio.create_task(self._stream_reply(reply, history))
        self._inflight = task
        try:
            await task
        except asyncio.CancelledError:
            self.transcript.abandon(reply.id)
            if not self._cancel_requested:
                raise
            logger.info("Reply %s cancelled", reply.id)
            return self.transcript.get(reply.id)
        except SaathiError as e:
            self._fail(reply, e)
            return None
        except Exception as e:
            logger.exception("Unexpected failure while streaming reply %s", reply.id)
            self._fail(reply, e)
            return None
        finally:
            if self._inflight is task:
                self._inflight = None
        return reply

    async def _stream_reply(self, reply: Message, history: list[dict]):
        payload = {"messages": history, "language": self.language}
        timeout = httpx.Timeout(
            connect=self.connect_timeout,
            read=self.idle_timeout,
            write=self.connect_timeout,
            pool=self.connect_timeout,
        )
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST", self.proxy_url, json=payload, headers=self.headers,
                ) as resp:
                    if not resp.is_success:
                        await resp.aread()
                        raise self._error_from_response(resp)
                    async for delta in iter_deltas(resp.aiter_bytes()):
                        self.transcript.append_delta(reply.id, delta)
        except httpx.HTTPError as e:
            raise NetworkFailure(str(e) or e.__class__.__name__) from e
        self.transcript.finalize(reply.id)

    @staticmethod
    def _error_from_response(resp: httpx.Response) -> SaathiError:
        message = None
        try:
            body = resp.json()
            if isinstance(body, dict) and isinstance(body.get("error"), str):
                message = body["error"]
        except ValueError:
            pass
        return error_for_status(resp.status_code, message)

    def _fail(self, reply: Message, error: Exception):
        logger.warning("Chat request failed: %s", error)
        self.transcript.abandon(reply.id)
        self.transcript.append_fallback()
        kind, severity = classify_failure(error)
        self.notify(severity, get_profile(self.language).notification(kind))

    # ── Cancellation / reset ──────────────────────────────────────────────

    def cancel(self) -> bool:
        """Abort the request in flight. Returns False if there was none."""
        if not self.busy:
            return False
        self._cancel_requested = True
        self._inflight.cancel()
        return True

    async def clear(self, language: str | None = None):
        """Cancel whatever is streaming, then reset the transcript to the greeting."""
        task = self._inflight
        if self.cancel() and task is not None:
            await asyncio.wait({task})
        self.transcript.reset(language)
