"""Reconciliation engine: decide between create, replace, no-op and delete.

Every call reads provider state fresh and acts on it; nothing is kept between
calls except, optionally, initialized provider handles. Errors are annotated
with the subject (service name or fqdn) and re-raised. There are no retries.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from kube_external_dns.errors import ExternalDNSError, NotFoundError, ReconcileCancelled
from kube_external_dns.providers.base import Provider, Registry, status_code
from kube_external_dns.records import DEFAULT_RECORD_TYPE, Record, denormalize, equivalent, normalize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconciliation call."""

    changed: bool
    record: Record


class Reconciler:
    """Compares desired records against a provider and applies the difference.

    Args:
        registry: Provider registry used to resolve provider names.
        cache_providers: Keep initialized providers per (name, root domain)
            instead of resolving (and re-discovering the zone) on every call.
            A cached provider, with its HTTP session and rate limiter, is
            shared by every thread reconciling that zone. It is dropped when
            the backend answers 404, so the next call re-initializes it.
    """

    def __init__(self, registry: Registry, *, cache_providers: bool = False):
        self.registry = registry
        self.cache_providers = cache_providers
        self._providers: Dict[Tuple[str, str], Provider] = {}
        self._providers_lock = threading.Lock()

    def provider(self, provider_name: str, root_domain: str) -> Provider:
        """Return an initialized provider for ``root_domain``."""
        if not self.cache_providers:
            return self.registry.resolve(provider_name, root_domain)

        key = (provider_name, normalize(root_domain))
        with self._providers_lock:
            cached = self._providers.get(key)
            if cached is None:
                cached = self.registry.resolve(provider_name, root_domain)
                self._providers[key] = cached
            return cached

    def forget(self, provider_name: str, root_domain: str) -> None:
        """Drop a cached provider so the next call re-initializes it."""
        with self._providers_lock:
            self._providers.pop((provider_name, normalize(root_domain)), None)

    def reconcile_upsert(
        self,
        provider_name: str,
        root_domain: str,
        fqdn: str,
        targets: Iterable[str],
        record_type: str = DEFAULT_RECORD_TYPE,
        ttl: int = 0,
        *,
        subject: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ReconcileResult:
        """Create the record if absent, replace it if its targets differ.

        Returns:
            ReconcileResult with ``changed`` False when the provider already
            held an equivalent record set.
        """
        desired = Record(fqdn=fqdn, record_type=record_type, targets=tuple(targets), ttl=ttl)
        name = subject or denormalize(desired.fqdn)

        try:
            _check_cancelled(cancel)
            provider = self._resolve(provider_name, root_domain)

            _check_cancelled(cancel)
            found = self._lookup(provider, desired)

            _check_cancelled(cancel)
            if found is None:
                logger.info(f"{name}: is not already set, will be creating a new record")
                provider.add_record(desired)
                return ReconcileResult(changed=True, record=desired)

            if not equivalent(found, desired):
                logger.warning(f"{name}: is set but contains different records, will be updating it")
                provider.update_record(desired)
                return ReconcileResult(changed=True, record=desired)

            logger.info(f"{name}: is already configured, nothing to do")
            return ReconcileResult(changed=False, record=desired)
        except ExternalDNSError as e:
            self._drop_stale(provider_name, root_domain, e)
            if not e.subject:
                e.subject = name
            raise

    def reconcile_delete(
        self,
        provider_name: str,
        root_domain: str,
        fqdn: str,
        record_type: str = DEFAULT_RECORD_TYPE,
        *,
        subject: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ReconcileResult:
        """Remove the whole record set for (fqdn, type).

        Raises:
            NotFoundError: The record does not exist at the provider. Deleting
                an absent record is reported rather than ignored.
        """
        target = Record(fqdn=fqdn, record_type=record_type)
        name = subject or denormalize(target.fqdn)

        try:
            _check_cancelled(cancel)
            provider = self._resolve(provider_name, root_domain)

            _check_cancelled(cancel)
            found = self._lookup(provider, target)
            if found is None:
                raise NotFoundError(f"expected record '{target.fqdn}' but it was not found")

            _check_cancelled(cancel)
            logger.info(f"{name}: record found, will be deleting it")
            provider.remove_record(found)
            return ReconcileResult(changed=True, record=found)
        except ExternalDNSError as e:
            self._drop_stale(provider_name, root_domain, e)
            if not e.subject:
                e.subject = name
            raise

    def _drop_stale(self, provider_name: str, root_domain: str, error: ExternalDNSError) -> None:
        """Forget a cached provider whose zone has gone away at the backend."""
        if not self.cache_providers or status_code(error) != 404:
            return
        logger.warning(f"{provider_name} ({root_domain}): backend returned 404, re-initializing on next call")
        self.forget(provider_name, root_domain)

    def _resolve(self, provider_name: str, root_domain: str) -> Provider:
        try:
            return self.provider(provider_name, root_domain)
        except ExternalDNSError as e:
            e.message = f"error getting provider: {e.message}"
            raise

    def _lookup(self, provider: Provider, record: Record) -> Optional[Record]:
        try:
            return provider.get_record(record.fqdn, record.record_type)
        except ExternalDNSError as e:
            e.message = f"could not determine if record '{record.fqdn}' exists: {e.message}"
            raise


def _check_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise ReconcileCancelled("reconciliation cancelled")
