"""
Chat client for the Saathi proxy.
Stream parsing, the persisted transcript, and the session that ties them together.
"""
from saathi.client.session import ChatSession
from saathi.client.storage import LocalStorage
from saathi.client.stream import StreamFrameParser, iter_deltas
from saathi.client.transcript import Message, Transcript

__all__ = [
    "ChatSession",
    "LocalStorage",
    "StreamFrameParser",
    "iter_deltas",
    "Message",
    "Transcript",
]
