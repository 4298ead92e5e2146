"""Error kinds raised by providers and the reconciler."""

from __future__ import annotations


class ExternalDNSError(Exception):
    """Base class for every error this package raises.

    ``subject`` names what the failing call was about (a service name or an
    fqdn) and is prepended to the message once the reconciler annotates it.
    """

    def __init__(self, message: str, *, subject: str = ""):
        super().__init__(message)
        self.message = message
        self.subject = subject

    def __str__(self) -> str:
        if self.subject:
            return f"{self.subject}: {self.message}"
        return self.message


class ConfigurationError(ExternalDNSError):
    """Missing credentials, unknown provider or empty root domain."""


class ZoneNotFoundError(ExternalDNSError):
    """The root domain has no matching zone at the backend."""


class NotFoundError(ExternalDNSError):
    """A delete was requested for a record that does not exist."""


class ReconcileCancelled(ExternalDNSError):
    """The caller cancelled the reconciliation between two steps."""


class BackendCallError(ExternalDNSError):
    """A call to the DNS backend failed."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        operation: str = "",
        fqdn: str = "",
        subject: str = "",
    ):
        self.provider = provider
        self.operation = operation
        self.fqdn = fqdn
        context = " ".join(p for p in (provider, operation) if p)
        if fqdn:
            context = f"{context} {fqdn}" if context else fqdn
        super().__init__(f"{context} failed: {message}" if context else message, subject=subject)


class PartialReplaceError(BackendCallError):
    """A remove-then-add replace stopped half way.

    ``phase == "remove"``: removal failed, the record set may be partially
    removed and nothing was re-added.
    ``phase == "add"``: the old set was removed but the new set was not
    (fully) added.
    """

    def __init__(self, message: str, *, phase: str, **kwargs):
        self.phase = phase
        if phase == "remove":
            state = "record set may be partially removed and was not re-added"
        else:
            state = "record set was removed but not re-added"
        super().__init__(f"{message} ({state})", **kwargs)
