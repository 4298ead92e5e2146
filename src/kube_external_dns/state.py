"""JSON snapshot of the records this process has made live."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

from kube_external_dns.records import Record

logger = logging.getLogger(__name__)


def default_state() -> Dict[str, Any]:
    return {"version": 1, "records": {}}


def record_key(provider: str, root_domain: str, fqdn: str, record_type: str) -> str:
    return "|".join((provider, root_domain, fqdn, record_type))


def snapshot(provider: str, root_domain: str, record: Record, now: int) -> Dict[str, Any]:
    """Describe a live record for the state file."""
    return {
        "provider": provider,
        "root_domain": root_domain,
        "fqdn": record.fqdn,
        "type": record.record_type,
        "targets": list(record.targets),
        "ttl": record.ttl,
        "last_synced": now,
    }


class StateStore:
    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return default_state()
        try:
            state = json.loads(self.path.read_text("utf-8"))
        except Exception as e:
            logger.warning(f"Failed to load state file {self.path}: {e}")
            return default_state()
        if not isinstance(state, dict):
            logger.warning(f"Ignoring state file {self.path}: expected an object")
            return default_state()
        state.setdefault("version", 1)
        if not isinstance(state.get("records"), dict):
            state["records"] = {}
        return state

    def save(self, state: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(state, indent=2, sort_keys=True), "utf-8")
        tmp_path.replace(self.path)
