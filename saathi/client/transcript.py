"""
Transcript — the client's conversation and the only thing allowed to change it.

Operations: append_user, open_assistant, append_delta, finalize, abandon,
append_fallback, reset. Each one persists the whole conversation under a
single storage key and notifies listeners with the message it touched
(None after a reset) so a UI can re-render.

Persisted form: a JSON array of {"id", "content", "sender", "timestamp"},
sender being "user" or "bot", timestamp ISO-8601.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

from saathi.client.storage import LocalStorage
from saathi.languages import get_profile, normalize_language

logger = logging.getLogger(__name__)

_SENDER_FOR_ROLE = {"user": "user", "assistant": "bot"}
_ROLE_FOR_SENDER = {"user": "user", "bot": "assistant", "assistant": "assistant"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Message:
    """One turn in the conversation."""
    role: str                # "user" or "assistant"
    content: str = ""
    id: str = field(default_factory=lambda: uuid4().hex)
    created_at: datetime = field(default_factory=_now)
    finalized: bool = True   # runtime only; an open assistant reply is False

    def to_storage(self) -> dict:
        return {
            "id": self.id,
            "content": self.content,
            "sender": _SENDER_FOR_ROLE[self.role],
            "timestamp": self.created_at.isoformat(),
        }

    @classmethod
    def from_storage(cls, data: dict) -> "Message":
        if not isinstance(data, dict):
            raise ValueError(f"stored message is not an object: {data!r}")
        role = _ROLE_FOR_SENDER.get(data.get("sender", ""))
        if role is None:
            raise ValueError(f"unknown sender {data.get('sender')!r}")
        content = data.get("content")
        if not isinstance(content, str):
            raise ValueError("content must be a string")
        created_at = datetime.fromisoformat(data["timestamp"])
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(role=role, content=content, id=str(data["id"]), created_at=created_at)

    def to_openai_format(self) -> dict:
        return {"role": self.role, "content": self.content}


Listener = Callable[[Message | None], None]


class Transcript:
    """Owns one conversation. Single writer; not thread-safe."""

    def __init__(
        self,
        storage: LocalStorage,
        key: str = "saathi-chat-history",
        language: str = "en",
        messages: list[Message] | None = None,
    ):
        self.storage = storage
        self.key = key
        self.language = normalize_language(language)
        self.messages: list[Message] = messages if messages is not None else [self._greeting()]
        self._listeners: list[Listener] = []

    # ── Loading / saving ──────────────────────────────────────────────────

    @classmethod
    def load(cls, storage: LocalStorage, key: str = "saathi-chat-history", language: str = "en") -> "Transcript":
        """
        Rebuild the conversation from storage, or start from the greeting
        if nothing is stored or the stored value does not parse.
        """
        raw = storage.get_item(key)
        messages = None
        if raw:
            try:
                items = json.loads(raw)
                if not isinstance(items, list):
                    raise ValueError("stored transcript is not a list")
                messages = [Message.from_storage(item) for item in items] or None
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Stored transcript under %r unreadable (%s); starting fresh", key, e)
                messages = None
        return cls(storage, key=key, language=language, messages=messages)

    def save(self):
        # An open reply with nothing in it yet is not worth restoring.
        kept = [m for m in self.messages if m.finalized or m.content]
        payload = json.dumps([m.to_storage() for m in kept], ensure_ascii=False)
        self.storage.set_item(self.key, payload)

    def _greeting(self) -> Message:
        return Message(role="assistant", content=get_profile(self.language).greeting)

    # ── Listeners ─────────────────────────────────────────────────────────

    def add_listener(self, callback: Listener):
        self._listeners.append(callback)

    def remove_listener(self, callback: Listener):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _changed(self, message: Message | None, persist: bool = True):
        if persist:
            self.save()
        for callback in list(self._listeners):
            callback(message)

    # ── Lookup ────────────────────────────────────────────────────────────

    def get(self, message_id: str) -> Message | None:
        # The message being patched is almost always the last one.
        for msg in reversed(self.messages):
            if msg.id == message_id:
                return msg
        return None

    def __len__(self) -> int:
        return len(self.messages)

    def __iter__(self):
        return iter(self.messages)

    def history(self) -> list[dict]:
        """What gets sent to the proxy: finished turns with content, in order."""
        return [m.to_openai_format() for m in self.messages if m.finalized and m.content]

    # ── Mutations ─────────────────────────────────────────────────────────

    def append_user(self, text: str) -> Message:
        msg = Message(role="user", content=text)
        self.messages.append(msg)
        self._changed(msg)
        return msg

    def open_assistant(self) -> Message:
        """Append an empty, open assistant reply for deltas to patch."""
        msg = Message(role="assistant", content="", finalized=False)
        self.messages.append(msg)
        self._changed(msg)
        return msg

    def append_delta(self, message_id: str, delta: str) -> Message | None:
        msg = self.get(message_id)
        if msg is None or msg.finalized:
            logger.debug("Dropping delta for closed or unknown message %s", message_id)
            return None
        if not delta:
            return msg
        if not msg.content:
            # createdAt is the moment the first character arrived
            msg.created_at = _now()
        msg.content += delta
        self._changed(msg)
        return msg

    def finalize(self, message_id: str) -> Message | None:
        msg = self.get(message_id)
        if msg is None or msg.finalized:
            return msg
        msg.finalized = True
        self._changed(msg)
        return msg

    def abandon(self, message_id: str) -> Message | None:
        """
        Close a reply that did not finish. Partial content is kept;
        a reply that never received anything is dropped.
        """
        msg = self.get(message_id)
        if msg is None or msg.finalized:
            return msg
        if msg.content:
            return self.finalize(message_id)
        self.messages.remove(msg)
        self._changed(msg)
        return None

    def append_fallback(self, language: str | None = None) -> Message:
        text = get_profile(language or self.language).fallback
        msg = Message(role="assistant", content=text)
        self.messages.append(msg)
        self._changed(msg)
        return msg

    def reset(self, language: str | None = None):
        """Back to the greeting alone; the stored entry is removed."""
        if language:
            self.language = normalize_language(language)
        self.messages = [self._greeting()]
        self.storage.remove_item(self.key)
        self._changed(None, persist=False)
