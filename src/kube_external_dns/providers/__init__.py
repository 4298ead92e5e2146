"""Bundled DNS provider adapters."""

from kube_external_dns.providers.base import HTTPProvider, Provider, Registry
from kube_external_dns.providers.cloudflare import CloudflareProvider
from kube_external_dns.providers.digitalocean import DigitalOceanProvider
from kube_external_dns.providers.dnsimple import DNSimpleProvider

BUILTIN_PROVIDERS = {
    "cloudflare": CloudflareProvider,
    "digitalocean": DigitalOceanProvider,
    "dnsimple": DNSimpleProvider,
}


def default_registry() -> Registry:
    """Build a registry holding every bundled provider."""
    registry = Registry()
    for name, factory in BUILTIN_PROVIDERS.items():
        registry.register(name, factory)
    return registry


__all__ = [
    "BUILTIN_PROVIDERS",
    "CloudflareProvider",
    "DNSimpleProvider",
    "DigitalOceanProvider",
    "HTTPProvider",
    "Provider",
    "Registry",
    "default_registry",
]
