from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

import google.auth.exceptions
import structlog

from quotabar.credentials import CredentialBag
from quotabar.errors import UnknownProviderError
from quotabar.forecast import COPILOT_OVERAGE_RATE
from quotabar.provider.aistudio import AIStudioProvider
from quotabar.provider.antigravity import (
    AntigravityProvider,
    claude_token,
    has_gemini_credentials,
)
from quotabar.provider.base import UsageProvider
from quotabar.provider.claude import ClaudeProvider
from quotabar.provider.copilot import CopilotProvider
from quotabar.provider.gemini import GeminiProvider
from quotabar.provider.openai import OpenAIProvider
from quotabar.provider.openrouter import OpenRouterProvider
from quotabar.provider.vertex import VertexProvider, load_default_credentials
from quotabar.provider.zen import ZenProvider

logger = structlog.get_logger()


class AvailabilityPolicy(Protocol):
    def is_available(self, name: "str", bag: "CredentialBag") -> "bool": ...


@dataclass(frozen=True)
class KeyPolicy:
    """
    available iff the bag holds a key for the provider's name.
    """

    def is_available(self, name: "str", bag: "CredentialBag") -> "bool":
        return bool(bag.get_key(name))


@dataclass(frozen=True)
class NestedFieldPolicy:
    """
    available iff one of fields is set in the nested namespace.
    """

    namespace: "str"
    fields: "tuple[str, ...]"

    def is_available(self, name: "str", bag: "CredentialBag") -> "bool":
        return any(bag.get_nested_field(self.namespace, f) for f in self.fields)


@dataclass(frozen=True)
class AnyOfPolicy:
    """
    available iff any of the per-identity checks passes.
    """

    checks: "tuple[Callable[[CredentialBag], bool], ...]"

    def is_available(self, name: "str", bag: "CredentialBag") -> "bool":
        return any(check(bag) for check in self.checks)


@dataclass(frozen=True)
class DatabaseTokenPolicy:
    """
    available iff resolution read a token out of the opencode database.
    """

    def is_available(self, name: "str", bag: "CredentialBag") -> "bool":
        return bool(bag.zen_token)


@dataclass(frozen=True)
class AmbientCredentialsPolicy:
    """
    available iff the platform credential chain finds credentials.
    The bag plays no part.
    """

    discover: "Callable[[], object]" = load_default_credentials

    def is_available(self, name: "str", bag: "CredentialBag") -> "bool":
        try:
            self.discover()
        except google.auth.exceptions.DefaultCredentialsError:
            return False
        return True


@dataclass(frozen=True)
class CatalogEntry:
    name: "str"
    factory: "Callable[[], UsageProvider]"
    policy: "AvailabilityPolicy" = field(default_factory=KeyPolicy)
    # cost per unit over the entitlement, for forecasting
    overage_rate: "float" = 0.0


CATALOG: "tuple[CatalogEntry, ...]" = (
    CatalogEntry(OpenRouterProvider.NAME, OpenRouterProvider),
    CatalogEntry(ClaudeProvider.NAME, ClaudeProvider),
    CatalogEntry(GeminiProvider.NAME, GeminiProvider),
    CatalogEntry(
        OpenAIProvider.NAME,
        OpenAIProvider,
        NestedFieldPolicy("openai", ("access", "key")),
    ),
    CatalogEntry(VertexProvider.NAME, VertexProvider, AmbientCredentialsPolicy()),
    CatalogEntry(AIStudioProvider.NAME, AIStudioProvider),
    CatalogEntry(
        CopilotProvider.NAME,
        CopilotProvider,
        overage_rate=COPILOT_OVERAGE_RATE,
    ),
    CatalogEntry(
        AntigravityProvider.NAME,
        AntigravityProvider,
        AnyOfPolicy((lambda bag: bool(claude_token(bag)), has_gemini_credentials)),
    ),
    CatalogEntry(ZenProvider.NAME, ZenProvider, DatabaseTokenPolicy()),
)


def is_available(entry: "CatalogEntry", bag: "CredentialBag") -> "bool":
    return entry.policy.is_available(entry.name, bag)


def select_entries(
    only: "str | None" = None,
    catalog: "Sequence[CatalogEntry]" = CATALOG,
) -> "list[CatalogEntry]":
    """
    narrows the catalog to the entry named only (case-insensitive).
    """
    if not only:
        return list(catalog)

    wanted = only.strip().lower()
    selected = [e for e in catalog if e.name.lower() == wanted]
    if not selected:
        known = ", ".join(e.name for e in catalog)
        raise UnknownProviderError(f"unknown provider {only!r} (known: {known})")
    return selected


def active_entries(
    bag: "CredentialBag",
    only: "str | None" = None,
    catalog: "Sequence[CatalogEntry]" = CATALOG,
) -> "list[CatalogEntry]":
    """
    returns the entries whose availability policy passes for bag.
    """
    active: "list[CatalogEntry]" = []
    for entry in select_entries(only, catalog):
        if is_available(entry, bag):
            active.append(entry)
            logger.debug("provider_active", provider=entry.name)
        else:
            logger.debug("provider_unavailable", provider=entry.name)
    return active
