"""Provider contract, shared HTTP plumbing and the provider registry."""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

import requests

from kube_external_dns.errors import (
    BackendCallError,
    ConfigurationError,
    PartialReplaceError,
)
from kube_external_dns.ratelimit import TokenBucket
from kube_external_dns.records import Record, denormalize, find

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10

# =============================================================================
# Provider Interface
# =============================================================================


class Provider(ABC):
    """Abstract base class for DNS providers.

    A provider instance is bound to one root zone by :meth:`init`.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name for logging."""
        pass

    @abstractmethod
    def init(self, root_domain: str) -> None:
        """Authenticate and resolve the zone for ``root_domain``.

        Raises:
            ConfigurationError: Required credentials are missing.
            ZoneNotFoundError: The backend has no zone for ``root_domain``.
        """
        pass

    @abstractmethod
    def health_check(self) -> None:
        """Make one lightweight authenticated call, raising on failure."""
        pass

    @abstractmethod
    def get_records(self) -> List[Record]:
        """Return every record set in the zone, aggregated per (fqdn, type)."""
        pass

    @abstractmethod
    def add_record(self, record: Record) -> None:
        """Create one native record per target value."""
        pass

    @abstractmethod
    def remove_record(self, record: Record) -> None:
        """Delete every native record matching (fqdn, type), whatever its value."""
        pass

    def get_record(self, fqdn: str, record_type: Optional[str] = None) -> Optional[Record]:
        """Return the current record set for ``fqdn``, or None if absent."""
        return find(self.get_records(), fqdn, record_type)

    def update_record(self, record: Record) -> None:
        """Replace the record set: remove everything, then add ``record``.

        This is not atomic at any backend. The add phase only runs when the
        remove phase succeeded; either failure is a PartialReplaceError.
        """
        try:
            self.remove_record(record)
        except BackendCallError as e:
            raise PartialReplaceError(
                e.message, phase="remove", provider=self.name, operation="replace", fqdn=record.fqdn
            ) from e
        try:
            self.add_record(record)
        except BackendCallError as e:
            raise PartialReplaceError(
                e.message, phase="add", provider=self.name, operation="replace", fqdn=record.fqdn
            ) from e


# =============================================================================
# Shared HTTP Plumbing
# =============================================================================


def status_code(error: BaseException) -> Optional[int]:
    """Return the HTTP status behind a wrapped error, if there is one."""
    cause = error.__cause__
    while cause is not None:
        if isinstance(cause, requests.exceptions.HTTPError) and cause.response is not None:
            return cause.response.status_code
        cause = cause.__cause__
    return None


def require_env(*names: str) -> Dict[str, str]:
    """Read required environment variables, raising ConfigurationError if any is unset."""
    values = {}
    for var in names:
        value = os.getenv(var, "").strip()
        if not value:
            raise ConfigurationError(f"{var} is not set")
        values[var] = value
    return values


class HTTPProvider(Provider):
    """Base for providers that talk to a JSON REST API through requests.

    Subclasses set ``_base_url`` and session headers in :meth:`init`. When
    ``_limiter`` is set every request waits for one token first.

    One instance may serve several worker threads at once (see
    ``Reconciler(cache_providers=True)``), so they share ``_session``. Headers
    are only written in :meth:`init`, before the instance is shared, and the
    limiter is thread-safe.
    """

    def __init__(self) -> None:
        self._session = requests.Session()
        self._base_url = ""
        self._limiter: Optional[TokenBucket] = None
        self.root_domain = ""

    def _set_root(self, root_domain: str) -> None:
        if not root_domain:
            raise ConfigurationError("root domain cannot be empty")
        self.root_domain = denormalize(root_domain)

    def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        fqdn: str = "",
        **kwargs: Any,
    ) -> Any:
        """Send one request and return the decoded JSON body (None if empty)."""
        if self._limiter is not None:
            self._limiter.wait(1)

        url = f"{self._base_url}{path}"
        logger.debug(f"{self.name}: {method} {url} {kwargs.get('params') or ''}")
        try:
            response = self._session.request(method, url, timeout=REQUEST_TIMEOUT_SECONDS, **kwargs)
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()
        except requests.exceptions.RequestException as e:
            raise BackendCallError(str(e), provider=self.name, operation=operation, fqdn=fqdn) from e
        except (json.JSONDecodeError, ValueError) as e:
            raise BackendCallError(
                f"invalid JSON response: {e}", provider=self.name, operation=operation, fqdn=fqdn
            ) from e


# =============================================================================
# Provider Registry
# =============================================================================

ProviderFactory = Callable[[], Provider]


class Registry:
    """Mapping of provider name to a factory producing uninitialized adapters.

    Built once at startup and handed to the reconciler.
    """

    def __init__(self) -> None:
        self._factories: Dict[str, ProviderFactory] = {}

    def register(self, name: str, factory: ProviderFactory) -> None:
        if name in self._factories:
            logger.error(f"Provider '{name}' tried to register twice")
        self._factories[name] = factory

    def names(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def resolve(self, name: str, root_domain: str) -> Provider:
        """Create the named provider and initialize it for ``root_domain``."""
        factory = self._factories.get(name)
        if factory is None:
            raise ConfigurationError(f"No such provider '{name}'")
        if not root_domain:
            raise ConfigurationError(f"root domain for provider '{name}' cannot be empty")

        provider = factory()
        provider.init(root_domain)
        return provider
