"""
Tests for config loading and the language table.
"""

from unittest.mock import patch

import pytest

import saathi.config as config_mod
import saathi.languages as languages_mod
from saathi.config import get_config, load_config, reset_config
from saathi.languages import available_languages, get_profile, load_language_table, normalize_language


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    monkeypatch.delenv("SAATHI_CONFIG", raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def restore_languages():
    saved = (languages_mod._table, languages_mod._table_path)
    yield
    languages_mod._table, languages_mod._table_path = saved


# ---------------------------------------------------------------------------
# config
# ---------------------------------------------------------------------------

def test_env_vars_resolved(tmp_path, monkeypatch):
    monkeypatch.setenv("LOVABLE_API_KEY", "sk-from-env")
    path = tmp_path / "config.yaml"
    path.write_text("gateway:\n  api_key: ${LOVABLE_API_KEY}\n  model: other/model\n")

    cfg = load_config(path)
    assert cfg["gateway"]["api_key"] == "sk-from-env"
    assert cfg["gateway"]["model"] == "other/model"


def test_unset_env_var_resolves_empty(tmp_path, monkeypatch):
    monkeypatch.delenv("LOVABLE_API_KEY", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text("gateway:\n  api_key: ${LOVABLE_API_KEY}\n")
    assert load_config(path)["gateway"]["api_key"] == ""


def test_missing_sections_come_from_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  port: 9001\n")

    cfg = load_config(path)
    assert cfg["server"] == {"host": "0.0.0.0", "port": 9001}
    assert cfg["gateway"]["url"] == config_mod.DEFAULTS["gateway"]["url"]
    assert cfg["client"]["storage_key"] == "saathi-chat-history"
    assert cfg["cors"]["allow_origin"] == "*"


def test_absent_default_file_uses_defaults(tmp_path):
    with patch.object(config_mod, "_CONFIG_PATH", tmp_path / "nope.yaml"):
        cfg = get_config()
    assert cfg["gateway"]["model"] == "google/gemini-2.5-flash"


def test_explicit_missing_path_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml")


def test_config_path_from_environment(tmp_path, monkeypatch):
    path = tmp_path / "alt.yaml"
    path.write_text("client:\n  language: hi\n")
    monkeypatch.setenv("SAATHI_CONFIG", str(path))
    assert get_config()["client"]["language"] == "hi"


def test_config_is_cached_until_reset(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  port: 1\n")
    first = load_config(path)
    path.write_text("server:\n  port: 2\n")
    assert get_config() is first
    reset_config()
    assert load_config(path)["server"]["port"] == 2


# ---------------------------------------------------------------------------
# languages
# ---------------------------------------------------------------------------

def test_bundled_languages():
    assert {"en", "hi"} <= set(available_languages())


@pytest.mark.parametrize("code, expected", [
    ("en", "en"), ("hi", "hi"), (" HI ", "hi"),
    ("fr", "en"), ("", "en"), (None, "en"), (3, "en"),
])
def test_normalize_language(code, expected):
    assert normalize_language(code) == expected


def test_normalize_language_with_configured_default():
    assert normalize_language("fr", default="hi") == "hi"
    assert normalize_language(None, default="hi") == "hi"
    assert normalize_language("en", default="hi") == "en"
    assert normalize_language("fr", default="de") == "en"


def test_every_profile_is_complete():
    for code in available_languages():
        profile = get_profile(code)
        assert profile.greeting
        assert profile.fallback
        assert "112" in profile.system_prompt
        assert profile.notification("rate_limited")
        assert profile.notification("no-such-kind") == profile.notification("generic")


def test_custom_language_table(tmp_path, restore_languages):
    path = tmp_path / "languages.yaml"
    path.write_text(
        "en:\n"
        "  system_prompt: \"Be kind. Resources:\\n{crisis_resources}\"\n"
        "  crisis_resources: ['Line A', 'Line B']\n"
        "  greeting: Hi\n"
        "  fallback: Sorry\n"
        "ta:\n"
        "  name: Tamil\n"
        "  system_prompt: Vanakkam\n"
        "  greeting: Vanakkam!\n"
        "  fallback: Mannikkavum\n"
    )
    table = load_language_table(path)
    assert set(table) == {"en", "ta"}
    assert get_profile("en").system_prompt == "Be kind. Resources:\n  • Line A\n  • Line B"
    assert get_profile("ta").greeting == "Vanakkam!"
    assert normalize_language("hi") == "en"


def test_table_without_default_language_is_rejected(tmp_path, restore_languages):
    path = tmp_path / "languages.yaml"
    path.write_text("hi:\n  system_prompt: x\n  greeting: y\n  fallback: z\n")
    with pytest.raises(ValueError):
        load_language_table(path)


def test_entry_missing_texts_is_rejected(tmp_path, restore_languages):
    path = tmp_path / "languages.yaml"
    path.write_text("en:\n  system_prompt: x\n")
    with pytest.raises(ValueError, match="greeting"):
        load_language_table(path)
