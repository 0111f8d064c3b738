"""
Language table — per-language prompt and UI text.

The table lives in languages.yaml next to this module (or at the path given
by `languages.path` in config.yaml). Each entry carries the system prompt
template, its fixed crisis resources, and the short texts the client shows:
greeting, fallback reply, emergency notice, quick replies, notifications.
Adding a language means adding an entry to the YAML file.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_TABLE_PATH = Path(__file__).parent / "languages.yaml"
DEFAULT_LANGUAGE = "en"

_table: dict[str, "LanguageProfile"] | None = None
_table_path: Path | None = None


@dataclass(frozen=True)
class LanguageProfile:
    code: str
    name: str
    system_prompt_template: str
    greeting: str
    fallback: str
    crisis_resources: tuple[str, ...] = ()
    emergency_notice: str = ""
    quick_replies: tuple[str, ...] = ()
    notifications: dict = field(default_factory=dict)

    @property
    def system_prompt(self) -> str:
        """Prompt template with the crisis resources filled in as bullets."""
        bullets = "\n".join(f"  • {r}" for r in self.crisis_resources)
        return self.system_prompt_template.replace("{crisis_resources}", bullets)

    def system_message(self) -> dict:
        return {"role": "system", "content": self.system_prompt}

    def notification(self, kind: str) -> str:
        return self.notifications.get(kind) or self.notifications.get("generic", "")


def _profile_from_entry(code: str, entry: dict) -> LanguageProfile:
    missing = [k for k in ("system_prompt", "greeting", "fallback") if not entry.get(k)]
    if missing:
        raise ValueError(f"Language '{code}' is missing {', '.join(missing)}")
    return LanguageProfile(
        code=code,
        name=entry.get("name", code),
        system_prompt_template=entry["system_prompt"],
        greeting=entry["greeting"].strip(),
        fallback=entry["fallback"].strip(),
        crisis_resources=tuple(entry.get("crisis_resources", [])),
        emergency_notice=entry.get("emergency_notice", "").strip(),
        quick_replies=tuple(entry.get("quick_replies", [])),
        notifications=dict(entry.get("notifications", {})),
    )


def load_language_table(path: Path | str | None = None) -> dict[str, LanguageProfile]:
    """
    Load and cache the language table.
    With no path, returns whatever table is cached (the bundled one on
    first use). An explicit path that differs from the cached one reloads.
    """
    global _table, _table_path
    if _table is not None and (path is None or Path(path) == _table_path):
        return _table
    table_path = Path(path) if path else _TABLE_PATH

    with open(table_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    table = {code: _profile_from_entry(code, entry) for code, entry in raw.items()}
    if DEFAULT_LANGUAGE not in table:
        raise ValueError(f"Language table {table_path} has no '{DEFAULT_LANGUAGE}' entry")

    logger.debug("Loaded %d languages from %s", len(table), table_path)
    _table, _table_path = table, table_path
    return _table


def available_languages() -> list[str]:
    return list(load_language_table())


def normalize_language(code, default: str = DEFAULT_LANGUAGE) -> str:
    """
    Map an absent or unrecognized language code to `default`, or to
    DEFAULT_LANGUAGE when `default` is not in the table either.
    """
    table = load_language_table()
    if isinstance(code, str) and code.strip().lower() in table:
        return code.strip().lower()
    if isinstance(default, str) and default.strip().lower() in table:
        return default.strip().lower()
    return DEFAULT_LANGUAGE


def get_profile(code=None) -> LanguageProfile:
    return load_language_table()[normalize_language(code)]
