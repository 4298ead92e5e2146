"""Shared fixtures: an in-memory DNS backend and a registry serving it."""

import pytest

from fakes import InMemoryBackend, InMemoryProvider
from kube_external_dns.providers.base import Registry


@pytest.fixture
def backend() -> InMemoryBackend:
    return InMemoryBackend()


@pytest.fixture
def registry(backend: InMemoryBackend) -> Registry:
    registry = Registry()
    registry.register("memory", lambda: InMemoryProvider(backend))
    return registry
