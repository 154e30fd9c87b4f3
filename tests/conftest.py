from collections.abc import Callable
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from quotabar.credentials import CredentialBag, CredentialSource


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def make_bag() -> "Callable[..., CredentialBag]":
    """
    builds a sealed bag from a plain dict, as if read from auth.json.
    """

    def _make(entries: "dict[str, Any] | None" = None) -> "CredentialBag":
        bag = CredentialBag()
        for key, value in (entries or {}).items():
            bag.offer(key, value, CredentialSource.AUTH_FILE)
        bag.seal()
        return bag

    return _make
