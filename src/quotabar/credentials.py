import contextlib
import enum
import json
import os
import sqlite3
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from quotabar.errors import NoCredentialsError

logger = structlog.get_logger()

# reserved bag keys written by the resolver itself
LINKED_ACCOUNTS_KEY = "antigravity"
ZEN_TOKEN_KEY = "opencode-zen-token"

# sub-fields checked inside a nested provider object, in priority order
NESTED_TOKEN_FIELDS: "tuple[str, ...]" = ("key", "access", "refresh", "token")

# each tuple is (environment variable, flat bag key path)
ENV_KEY_PATHS: "tuple[tuple[str, str], ...]" = (
    ("OPENAI_API_KEY", "openai.key"),
    ("ANTHROPIC_API_KEY", "anthropic.key"),
    ("OPENROUTER_API_KEY", "openrouter.key"),
    ("GEMINI_API_KEY", "gemini.key"),
    ("GOOGLE_API_KEY", "googleaistudio.key"),
    ("GITHUB_TOKEN", "copilot.token"),
    ("COPILOT_TOKEN", "copilot.token"),
)

# environment variables that also populate a nested {"access": value}
# object, matching the shape auth.json uses for OAuth logins
ENV_NESTED_ACCESS: "tuple[tuple[str, str], ...]" = (
    ("OPENAI_API_KEY", "openai"),
    ("ANTHROPIC_API_KEY", "anthropic"),
)

_ZEN_TOKEN_QUERIES: "tuple[str, ...]" = (
    "SELECT access_token FROM control_account "
    "WHERE active = 1 ORDER BY time_updated DESC LIMIT 1",
    "SELECT access_token FROM control_account ORDER BY time_updated DESC LIMIT 1",
)


class CredentialSource(enum.IntEnum):
    """
    CredentialSource lists the places credentials come from,
    ordered by priority (lower value wins).
    """

    AUTH_FILE = 1
    LINKED_ACCOUNTS = 2
    ENVIRONMENT = 3
    DATABASE = 4


@dataclass(frozen=True, slots=True)
class KeyPaths:
    """
    KeyPaths describes where a provider's key may live in the bag.
    """

    # flat key, e.g. "openrouter.key"
    flat: "str"
    # nested namespace, e.g. {"openrouter": {"key": ...}}
    nested: "str"
    # one extra nested namespace checked last
    fallback: "str" = ""


KEY_PATHS: "dict[str, KeyPaths]" = {
    "OpenRouter": KeyPaths("openrouter.key", "openrouter"),
    "Claude": KeyPaths("claude.key", "claude", fallback="anthropic"),
    "Gemini CLI": KeyPaths("gemini.key", "gemini"),
    "OpenAI": KeyPaths("openai.key", "openai"),
    "Vertex AI": KeyPaths("vertex.key", "vertex"),
    # users often write "google" or "google-custom"
    "Google AI Studio": KeyPaths(
        "googleaistudio.key", "google", fallback="google-custom"
    ),
    "GitHub Copilot": KeyPaths("copilot.token", "github-copilot"),
}


@dataclass(frozen=True, slots=True)
class AuthFileFields:
    """
    statically-known convenience fields of the primary auth.json.
    """

    openrouter_key: "str" = ""
    claude_key: "str" = ""
    gemini_key: "str" = ""
    copilot_token: "str" = ""

    @classmethod
    def from_raw(cls, raw: "Mapping[str, Any]") -> "AuthFileFields":
        return cls(
            openrouter_key=_as_str(raw.get("openrouter.key")),
            claude_key=_as_str(raw.get("claude.key")),
            gemini_key=_as_str(raw.get("gemini.key")),
            copilot_token=_as_str(raw.get("copilot.token")),
        )


def _as_str(value: "Any") -> "str":
    return value if isinstance(value, str) else ""


class CredentialBag(Mapping[str, Any]):
    """
    CredentialBag holds every credential discovered on the machine,
    keyed by opaque key paths. Values are strings or nested mappings;
    keys the resolver does not know about pass through untouched.

    Writes are first-writer-wins: once a key is set, offer() refuses
    to replace it. The resolver seals the bag when it is done, after
    which it is read-only.
    """

    def __init__(self) -> "None":
        self._entries: "dict[str, Any]" = {}
        self._sources: "dict[str, CredentialSource]" = {}
        self._sealed = False
        self.auth_file: "AuthFileFields | None" = None

    def __getitem__(self, key: "str") -> "Any":
        return self._entries[key]

    def __iter__(self) -> "Iterator[str]":
        return iter(self._entries)

    def __len__(self) -> "int":
        return len(self._entries)

    def __repr__(self) -> "str":
        # never print secrets
        return f"CredentialBag(keys={sorted(self._entries)!r})"

    @property
    def sealed(self) -> "bool":
        return self._sealed

    def seal(self) -> "None":
        self._sealed = True

    def offer(self, key: "str", value: "Any", source: "CredentialSource") -> "bool":
        """
        sets key only if no source set it before. Returns True if the
        value was stored.
        """
        if self._sealed:
            raise RuntimeError("credential bag is sealed")
        if key in self._entries:
            return False

        self._entries[key] = value
        self._sources[key] = source
        return True

    def source_of(self, key: "str") -> "CredentialSource | None":
        return self._sources.get(key)

    def get_key(self, provider_name: "str") -> "str":
        """
        finds the API key or token for a provider: the flat key path
        first, then the nested object (key, access, refresh, token),
        then the provider's fallback namespace. Returns "" if nothing
        matches.
        """
        paths = KEY_PATHS.get(provider_name)
        if paths is None:
            return ""

        flat = _as_str(self._entries.get(paths.flat))
        if flat:
            return flat

        for namespace in (paths.nested, paths.fallback):
            if not namespace:
                continue
            for field in NESTED_TOKEN_FIELDS:
                value = self.get_nested_field(namespace, field)
                if value:
                    return value

        return ""

    def get_nested_field(self, namespace: "str", field: "str") -> "str":
        nested = self._entries.get(namespace)
        if not isinstance(nested, Mapping):
            return ""
        return _as_str(nested.get(field))

    @property
    def linked_accounts(self) -> "Mapping[str, Any]":
        value = self._entries.get(LINKED_ACCOUNTS_KEY)
        return value if isinstance(value, Mapping) else {}

    @property
    def zen_token(self) -> "str":
        return _as_str(self._entries.get(ZEN_TOKEN_KEY))


class CredentialResolver:
    """
    CredentialResolver merges the auth.json file, the linked accounts
    file, environment variables and the opencode SQLite database into
    one CredentialBag, in that priority order.
    """

    def __init__(
        self,
        environ: "Mapping[str, str] | None" = None,
        home: "Path | None" = None,
    ) -> "None":
        self._environ = os.environ if environ is None else environ
        self._home = Path.home() if home is None else home

    def auth_file_paths(self) -> "list[Path]":
        paths: "list[Path]" = []
        xdg_data = self._environ.get("XDG_DATA_HOME", "")
        if xdg_data:
            paths.append(Path(xdg_data) / "opencode" / "auth.json")
        paths.append(self._home / ".local" / "share" / "opencode" / "auth.json")
        paths.append(
            self._home / "Library" / "Application Support" / "opencode" / "auth.json"
        )
        return paths

    def linked_accounts_paths(self) -> "list[Path]":
        return [
            self._home / ".config" / "opencode" / "antigravity-accounts.json",
            self._home / ".local" / "share" / "opencode" / "antigravity-accounts.json",
        ]

    def database_paths(self) -> "list[Path]":
        return [
            self._home / ".local" / "share" / "opencode" / "opencode.db",
            self._home / "Library" / "Application Support" / "opencode" / "opencode.db",
        ]

    def resolve(self) -> "CredentialBag":
        """
        builds and seals the bag. Raises NoCredentialsError if no
        source produced a single credential.
        """
        bag = CredentialBag()

        auth = _load_first_json(self.auth_file_paths())
        if auth is not None:
            path, raw = auth
            for key, value in raw.items():
                bag.offer(key, value, CredentialSource.AUTH_FILE)
            bag.auth_file = AuthFileFields.from_raw(raw)
            logger.info("credentials_loaded", source="auth_file", path=str(path))

        linked = _load_first_json(self.linked_accounts_paths())
        if linked is not None:
            path, raw = linked
            # foreign schema, kept whole under one namespace
            bag.offer(LINKED_ACCOUNTS_KEY, raw, CredentialSource.LINKED_ACCOUNTS)
            logger.info(
                "credentials_loaded", source="linked_accounts", path=str(path)
            )

        injected = self._inject_env(bag)
        if injected:
            logger.info("credentials_loaded", source="environment", keys=injected)

        token = self._discover_zen_token()
        if token:
            bag.offer(ZEN_TOKEN_KEY, token, CredentialSource.DATABASE)
            logger.info("credentials_loaded", source="database")

        bag.seal()
        if not bag:
            raise NoCredentialsError(
                "no provider credentials found "
                "(no auth.json, no linked accounts, no environment variables)"
            )
        return bag

    def _inject_env(self, bag: "CredentialBag") -> "list[str]":
        injected: "list[str]" = []
        for env_var, key_path in ENV_KEY_PATHS:
            value = self._environ.get(env_var, "")
            if value and bag.offer(key_path, value, CredentialSource.ENVIRONMENT):
                injected.append(key_path)

        for env_var, namespace in ENV_NESTED_ACCESS:
            value = self._environ.get(env_var, "")
            if value and bag.offer(
                namespace, {"access": value}, CredentialSource.ENVIRONMENT
            ):
                injected.append(namespace)
        return injected

    def _discover_zen_token(self) -> "str":
        for db_path in self.database_paths():
            if not db_path.is_file():
                continue
            try:
                token = _query_zen_token(db_path)
            except sqlite3.Error as exc:
                logger.debug("zen_db_unreadable", path=str(db_path), error=str(exc))
                continue
            if token:
                return token
        return ""


def _load_first_json(paths: "list[Path]") -> "tuple[Path, dict[str, Any]] | None":
    """
    returns the first path that exists and holds a JSON object.
    """
    for path in paths:
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            continue
        except (OSError, ValueError) as exc:
            logger.warning("credential_file_unreadable", path=str(path), error=str(exc))
            continue

        if isinstance(raw, dict):
            return path, raw
        logger.warning("credential_file_not_an_object", path=str(path))
    return None


def _query_zen_token(db_path: "Path") -> "str":
    # read-only so a running opencode instance is never disturbed
    uri = f"{db_path.as_uri()}?mode=ro"
    with contextlib.closing(sqlite3.connect(uri, uri=True)) as conn:
        for query in _ZEN_TOKEN_QUERIES:
            try:
                row = conn.execute(query).fetchone()
            except sqlite3.OperationalError as exc:
                # older schemas have no active column
                logger.debug("zen_db_query_failed", path=str(db_path), error=str(exc))
                continue
            if row and isinstance(row[0], str) and row[0]:
                return row[0]
    return ""
