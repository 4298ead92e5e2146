"""Record model shared by the reconciler and every provider adapter."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

TERMINATOR = "."
DEFAULT_RECORD_TYPE = "A"


def normalize(name: str) -> str:
    """Return ``name`` with exactly one trailing dot."""
    if not name or name.endswith(TERMINATOR):
        return name
    return name + TERMINATOR


def denormalize(fqdn: str) -> str:
    """Strip one trailing dot, if present."""
    if fqdn and fqdn.endswith(TERMINATOR):
        return fqdn[:-1]
    return fqdn


def in_zone(fqdn: str, root_domain: str) -> bool:
    """Return True if ``fqdn`` is the zone apex or a name below it."""
    fqdn = normalize(fqdn)
    root = normalize(root_domain)
    if not root:
        return False
    return fqdn == root or fqdn.endswith(TERMINATOR + root)


@dataclass(frozen=True)
class Record:
    """A DNS record set: every target value sharing one (fqdn, type) pair."""

    fqdn: str
    record_type: str = DEFAULT_RECORD_TYPE
    targets: Tuple[str, ...] = field(default_factory=tuple)
    ttl: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "fqdn", normalize(self.fqdn))
        object.__setattr__(self, "targets", tuple(self.targets))

    @property
    def name(self) -> str:
        return denormalize(self.fqdn)


def equivalent(a: Record, b: Record) -> bool:
    """Compare target lists as multisets.

    Order does not matter but duplicate values do: ``("1.1.1.1", "1.1.1.1")``
    is not equivalent to ``("1.1.1.1",)``.
    """
    return Counter(a.targets) == Counter(b.targets)


def aggregate(native_records: Iterable[Tuple[str, str, str, int]]) -> List[Record]:
    """Group backend-native records into one Record per (fqdn, type).

    Args:
        native_records: ``(fqdn, type, content, ttl)`` tuples as read from a
            backend. ``fqdn`` may or may not carry the trailing dot.

    Returns:
        Records in first-seen order, each carrying the TTL of the first native
        record of its group.
    """
    targets: Dict[Tuple[str, str], List[str]] = {}
    ttls: Dict[Tuple[str, str], int] = {}
    for fqdn, record_type, content, ttl in native_records:
        key = (normalize(fqdn), record_type)
        if key not in targets:
            targets[key] = []
            ttls[key] = ttl
        targets[key].append(content)

    return [
        Record(fqdn=fqdn, record_type=record_type, targets=tuple(values), ttl=ttls[(fqdn, record_type)])
        for (fqdn, record_type), values in targets.items()
    ]


def find(records: Iterable[Record], fqdn: str, record_type: Optional[str] = None) -> Optional[Record]:
    """Return the record matching ``fqdn`` exactly (and ``record_type`` if given)."""
    wanted = normalize(fqdn)
    for record in records:
        if record.fqdn != wanted:
            continue
        if record_type is not None and record.record_type != record_type:
            continue
        return record
    return None
