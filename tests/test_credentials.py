import contextlib
import json
import sqlite3
from pathlib import Path

import pytest

from quotabar.credentials import (
    LINKED_ACCOUNTS_KEY,
    ZEN_TOKEN_KEY,
    CredentialBag,
    CredentialResolver,
    CredentialSource,
)
from quotabar.errors import NoCredentialsError


def _write_json(path: "Path", data: "object") -> "None":
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


def _write_zen_db(path: "Path", rows: "list[tuple[str, int, int]]") -> "None":
    path.parent.mkdir(parents=True, exist_ok=True)
    with contextlib.closing(sqlite3.connect(path)) as conn:
        conn.execute(
            "CREATE TABLE control_account "
            "(access_token TEXT, active INTEGER, time_updated INTEGER)"
        )
        conn.executemany("INSERT INTO control_account VALUES (?, ?, ?)", rows)
        conn.commit()


def _auth_path(home: "Path") -> "Path":
    return home / ".local" / "share" / "opencode" / "auth.json"


class TestCredentialBag:
    def test_first_writer_wins(self) -> "None":
        bag = CredentialBag()
        assert bag.offer("openai.key", "from-file", CredentialSource.AUTH_FILE)
        assert not bag.offer("openai.key", "from-env", CredentialSource.ENVIRONMENT)
        assert bag["openai.key"] == "from-file"
        assert bag.source_of("openai.key") == CredentialSource.AUTH_FILE

    def test_sealed_bag_rejects_writes(self) -> "None":
        bag = CredentialBag()
        bag.seal()
        with pytest.raises(RuntimeError):
            bag.offer("openai.key", "x", CredentialSource.ENVIRONMENT)

    def test_repr_hides_values(self, make_bag) -> "None":
        bag = make_bag({"openrouter.key": "sk-secret"})
        assert "sk-secret" not in repr(bag)


class TestGetKey:
    def test_flat_key_wins_over_nested(self, make_bag) -> "None":
        bag = make_bag(
            {"openrouter.key": "flat", "openrouter": {"key": "nested"}},
        )
        assert bag.get_key("OpenRouter") == "flat"

    def test_nested_field_priority(self, make_bag) -> "None":
        bag = make_bag({"claude": {"token": "t", "refresh": "r", "access": "a"}})
        assert bag.get_key("Claude") == "a"

    def test_google_custom_fallback(self, make_bag) -> "None":
        bag = make_bag({"google-custom": {"key": "AIza-custom"}})
        assert bag.get_key("Google AI Studio") == "AIza-custom"

    def test_claude_falls_back_to_anthropic_login(self, make_bag) -> "None":
        bag = make_bag({"anthropic": {"access": "oauth-token"}})
        assert bag.get_key("Claude") == "oauth-token"

    @pytest.mark.parametrize(
        "entries",
        [
            {},
            {"openai": "not-a-mapping"},
            {"openai": {"access": 42}},
            {"openai.key": ["list"]},
            {"unrelated": {"key": "x"}},
        ],
    )
    def test_returns_empty_string_for_any_shape(self, make_bag, entries) -> "None":
        bag = make_bag(entries)
        for name in ("OpenAI", "Nonexistent", ""):
            assert bag.get_key(name) == ""

    def test_get_nested_field(self, make_bag) -> "None":
        bag = make_bag({"openai": {"accountId": "acc-1"}, "flat": "x"})
        assert bag.get_nested_field("openai", "accountId") == "acc-1"
        assert bag.get_nested_field("openai", "missing") == ""
        assert bag.get_nested_field("flat", "anything") == ""
        assert bag.get_nested_field("absent", "anything") == ""


class TestCredentialResolver:
    def test_reads_auth_file_and_convenience_fields(self, tmp_path: "Path") -> "None":
        _write_json(
            _auth_path(tmp_path),
            {"openrouter.key": "sk-or", "github-copilot": {"access": "gho"}},
        )
        bag = CredentialResolver(environ={}, home=tmp_path).resolve()

        assert bag.get_key("OpenRouter") == "sk-or"
        assert bag.get_key("GitHub Copilot") == "gho"
        assert bag.auth_file is not None
        assert bag.auth_file.openrouter_key == "sk-or"
        assert bag.sealed

    def test_xdg_data_home_takes_precedence(self, tmp_path: "Path") -> "None":
        xdg = tmp_path / "xdg"
        _write_json(xdg / "opencode" / "auth.json", {"openrouter.key": "xdg"})
        _write_json(_auth_path(tmp_path), {"openrouter.key": "default"})

        bag = CredentialResolver(
            environ={"XDG_DATA_HOME": str(xdg)}, home=tmp_path
        ).resolve()
        assert bag.get_key("OpenRouter") == "xdg"

    def test_skips_unparseable_candidate(self, tmp_path: "Path") -> "None":
        broken = _auth_path(tmp_path)
        broken.parent.mkdir(parents=True)
        broken.write_text("{not json", encoding="utf-8")
        mac = tmp_path / "Library" / "Application Support" / "opencode" / "auth.json"
        _write_json(mac, {"gemini.key": "g"})

        bag = CredentialResolver(environ={}, home=tmp_path).resolve()
        assert bag.get_key("Gemini CLI") == "g"

    def test_linked_accounts_nested_under_reserved_key(
        self, tmp_path: "Path"
    ) -> "None":
        linked = {"client_id": "cid", "refresh_token": "rt", "openai.key": "x"}
        _write_json(
            tmp_path / ".config" / "opencode" / "antigravity-accounts.json", linked
        )
        bag = CredentialResolver(environ={}, home=tmp_path).resolve()

        assert bag[LINKED_ACCOUNTS_KEY] == linked
        assert bag.linked_accounts["client_id"] == "cid"
        # foreign keys are not merged into the top level
        assert "openai.key" not in bag

    def test_env_only_works_without_files(self, tmp_path: "Path") -> "None":
        bag = CredentialResolver(
            environ={"OPENAI_API_KEY": "sk-env", "GITHUB_TOKEN": "ghp"},
            home=tmp_path,
        ).resolve()

        assert bag["openai.key"] == "sk-env"
        assert bag.get_nested_field("openai", "access") == "sk-env"
        assert bag.get_key("GitHub Copilot") == "ghp"
        assert bag.source_of("openai.key") == CredentialSource.ENVIRONMENT

    def test_env_never_overrides_file(self, tmp_path: "Path") -> "None":
        _write_json(
            _auth_path(tmp_path),
            {"openai.key": "file-key", "anthropic": {"access": "file-oauth"}},
        )
        bag = CredentialResolver(
            environ={"OPENAI_API_KEY": "env-key", "ANTHROPIC_API_KEY": "env-ant"},
            home=tmp_path,
        ).resolve()

        assert bag["openai.key"] == "file-key"
        assert bag.get_nested_field("anthropic", "access") == "file-oauth"
        # the flat anthropic key was unset, so env fills it
        assert bag["anthropic.key"] == "env-ant"

    def test_higher_priority_source_is_never_overwritten(
        self, tmp_path: "Path"
    ) -> "None":
        _write_json(_auth_path(tmp_path), {ZEN_TOKEN_KEY: "from-file"})
        _write_zen_db(
            tmp_path / ".local" / "share" / "opencode" / "opencode.db",
            [("from-db", 1, 10)],
        )
        bag = CredentialResolver(environ={}, home=tmp_path).resolve()

        assert bag.zen_token == "from-file"
        assert bag.source_of(ZEN_TOKEN_KEY) == CredentialSource.AUTH_FILE

    def test_copilot_env_variables_share_one_path(self, tmp_path: "Path") -> "None":
        bag = CredentialResolver(
            environ={"COPILOT_TOKEN": "second", "GITHUB_TOKEN": "first"},
            home=tmp_path,
        ).resolve()
        assert bag["copilot.token"] == "first"

    def test_database_prefers_active_row(self, tmp_path: "Path") -> "None":
        _write_zen_db(
            tmp_path / ".local" / "share" / "opencode" / "opencode.db",
            [("inactive-newest", 0, 30), ("active-old", 1, 10), ("active-new", 1, 20)],
        )
        bag = CredentialResolver(environ={}, home=tmp_path).resolve()
        assert bag.zen_token == "active-new"
        assert bag.source_of(ZEN_TOKEN_KEY) == CredentialSource.DATABASE

    def test_database_falls_back_to_any_row(self, tmp_path: "Path") -> "None":
        _write_zen_db(
            tmp_path / "Library" / "Application Support" / "opencode" / "opencode.db",
            [("old", 0, 10), ("newest", 0, 20)],
        )
        bag = CredentialResolver(environ={}, home=tmp_path).resolve()
        assert bag.zen_token == "newest"

    def test_database_without_table_is_ignored(self, tmp_path: "Path") -> "None":
        db_path = tmp_path / ".local" / "share" / "opencode" / "opencode.db"
        db_path.parent.mkdir(parents=True)
        with contextlib.closing(sqlite3.connect(db_path)) as conn:
            conn.execute("CREATE TABLE other (x TEXT)")
            conn.commit()

        bag = CredentialResolver(
            environ={"OPENROUTER_API_KEY": "k"}, home=tmp_path
        ).resolve()
        assert bag.zen_token == ""
        assert ZEN_TOKEN_KEY not in bag

    def test_raises_when_nothing_found(self, tmp_path: "Path") -> "None":
        with pytest.raises(NoCredentialsError):
            CredentialResolver(environ={}, home=tmp_path).resolve()
