"""Unit tests for the provider registry and the shared Provider behavior."""

import logging

import pytest

from fakes import InMemoryBackend, InMemoryProvider
from kube_external_dns.errors import ConfigurationError, PartialReplaceError, ZoneNotFoundError
from kube_external_dns.providers import (
    CloudflareProvider,
    DigitalOceanProvider,
    DNSimpleProvider,
    Registry,
    default_registry,
)
from kube_external_dns.records import Record


def test_default_registry_holds_bundled_providers() -> None:
    registry = default_registry()

    assert registry.names() == ["cloudflare", "digitalocean", "dnsimple"]
    assert "cloudflare" in registry
    assert "route53" not in registry


def test_default_registries_are_independent() -> None:
    first = default_registry()
    second = default_registry()
    first.register("memory", lambda: InMemoryProvider(InMemoryBackend()))

    assert "memory" in first
    assert "memory" not in second


def test_resolve_unknown_provider_is_configuration_error(registry: Registry) -> None:
    with pytest.raises(ConfigurationError, match="No such provider 'nope'"):
        registry.resolve("nope", "example.com")


def test_resolve_empty_root_domain_is_configuration_error(registry: Registry, backend: InMemoryBackend) -> None:
    with pytest.raises(ConfigurationError):
        registry.resolve("memory", "")
    assert backend.init_calls == 0


def test_resolve_initializes_fresh_provider(registry: Registry, backend: InMemoryBackend) -> None:
    first = registry.resolve("memory", "example.com.")
    second = registry.resolve("memory", "example.com")

    assert first is not second
    assert first.root_domain == "example.com"
    assert backend.init_calls == 2


def test_resolve_propagates_zone_not_found(registry: Registry) -> None:
    with pytest.raises(ZoneNotFoundError):
        registry.resolve("memory", "missing.org")


def test_duplicate_registration_logs_and_last_wins(caplog: pytest.LogCaptureFixture) -> None:
    registry = Registry()
    first_backend = InMemoryBackend()
    second_backend = InMemoryBackend()
    registry.register("memory", lambda: InMemoryProvider(first_backend))

    with caplog.at_level(logging.ERROR):
        registry.register("memory", lambda: InMemoryProvider(second_backend))

    assert "tried to register twice" in caplog.text
    provider = registry.resolve("memory", "example.com")
    assert provider.backend is second_backend


@pytest.mark.parametrize("provider_class", [CloudflareProvider, DigitalOceanProvider, DNSimpleProvider])
def test_bundled_providers_require_credentials(provider_class, monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("CLOUDFLARE_EMAIL", "CLOUDFLARE_KEY", "DO_PAT", "DNSIMPLE_TOKEN"):
        monkeypatch.delenv(var, raising=False)

    with pytest.raises(ConfigurationError, match="is not set"):
        provider_class().init("example.com")


def test_update_record_removes_then_adds(backend: InMemoryBackend) -> None:
    backend.seed("svc.example.com", "A", "1.1.1.1", "2.2.2.2")
    provider = InMemoryProvider(backend)

    provider.update_record(Record("svc.example.com", targets=("3.3.3.3",)))

    assert backend.calls == ["remove", "add"]
    assert provider.get_record("svc.example.com").targets == ("3.3.3.3",)


def test_update_record_skips_add_when_remove_fails(backend: InMemoryBackend) -> None:
    backend.seed("svc.example.com", "A", "1.1.1.1")
    backend.fail_on.add("remove")
    provider = InMemoryProvider(backend)

    with pytest.raises(PartialReplaceError) as exc_info:
        provider.update_record(Record("svc.example.com", targets=("3.3.3.3",)))

    assert exc_info.value.phase == "remove"
    assert "not re-added" in str(exc_info.value)
    assert "add" not in backend.calls


def test_update_record_reports_removed_but_not_added(backend: InMemoryBackend) -> None:
    backend.seed("svc.example.com", "A", "1.1.1.1")
    backend.fail_on.add("add")
    provider = InMemoryProvider(backend)

    with pytest.raises(PartialReplaceError) as exc_info:
        provider.update_record(Record("svc.example.com", targets=("3.3.3.3",)))

    assert exc_info.value.phase == "add"
    assert "removed but not re-added" in str(exc_info.value)
    assert backend.records == []
