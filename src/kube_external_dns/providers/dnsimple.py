"""DNSimple DNS provider.

Environment variables:
    DNSIMPLE_TOKEN         API access token (required)
    DNSIMPLE_ACCOUNT_ID    Account identifier (default: looked up via /whoami)
    DNSIMPLE_API_URL       API base URL (default: https://api.dnsimple.com/v2)
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List

from kube_external_dns.errors import ConfigurationError, ZoneNotFoundError
from kube_external_dns.providers.base import HTTPProvider, require_env
from kube_external_dns.ratelimit import TokenBucket
from kube_external_dns.records import Record, aggregate, in_zone, normalize

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.dnsimple.com/v2"
PAGE_SIZE = 100
RATE_PER_SECOND = 1.5
BURST = 5


class DNSimpleProvider(HTTPProvider):
    """DNSimple v2 API implementation.

    Record names are relative to the zone; the apex record has an empty name.
    """

    def __init__(self) -> None:
        super().__init__()
        self._limiter = TokenBucket(RATE_PER_SECOND, BURST)
        self.account_id = ""

    @property
    def name(self) -> str:
        return "DNSimple"

    def init(self, root_domain: str) -> None:
        creds = require_env("DNSIMPLE_TOKEN")
        self._set_root(root_domain)
        self._base_url = os.getenv("DNSIMPLE_API_URL", DEFAULT_API_URL).rstrip("/")
        self._session.headers.update(
            {
                "Authorization": f"Bearer {creds['DNSIMPLE_TOKEN']}",
                "Accept": "application/json",
            }
        )

        self.account_id = os.getenv("DNSIMPLE_ACCOUNT_ID", "").strip()
        if not self.account_id:
            whoami = self._whoami()
            account = whoami.get("account") or {}
            if not account.get("id"):
                raise ConfigurationError("token is not bound to an account; set DNSIMPLE_ACCOUNT_ID")
            self.account_id = str(account["id"])

        zones = self._list(f"/{self.account_id}/zones", operation="list zones")
        if not any(zone.get("name") == self.root_domain for zone in zones):
            raise ZoneNotFoundError(f"Zone for '{self.root_domain}' not found")

        logger.info(f"Configured {self.name} with zone '{self.root_domain}'")

    def _whoami(self) -> Dict[str, Any]:
        body = self._request("GET", "/whoami", operation="whoami") or {}
        return body.get("data") or {}

    def _list(self, path: str, *, operation: str) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        page = 1
        while True:
            body = self._request(
                "GET", path, operation=operation, params={"page": page, "per_page": PAGE_SIZE}
            ) or {}
            items = body.get("data") or []
            results.extend(items)
            total_pages = (body.get("pagination") or {}).get("total_pages") or 1
            if not items or page >= total_pages:
                return results
            page += 1

    @property
    def _records_path(self) -> str:
        return f"/{self.account_id}/zones/{self.root_domain}/records"

    def health_check(self) -> None:
        self._whoami()

    def parse_name(self, fqdn: str) -> str:
        """Return the zone-relative name for ``fqdn`` ("" for the apex).

        Raises:
            ConfigurationError: ``fqdn`` is not inside the zone.
        """
        fqdn = normalize(fqdn)
        root = normalize(self.root_domain)
        if not in_zone(fqdn, root):
            raise ConfigurationError(f"{fqdn} is not inside zone {self.root_domain}")
        if fqdn == root:
            return ""
        return fqdn[: -len(root) - 1]

    def qualify_name(self, name: str) -> str:
        if not name:
            return normalize(self.root_domain)
        return normalize(f"{name}.{self.root_domain}")

    def _native_records(self) -> List[Dict[str, Any]]:
        return self._list(self._records_path, operation="list records")

    def get_records(self) -> List[Record]:
        return aggregate(
            (self.qualify_name(rec.get("name") or ""), rec["type"], rec.get("content", ""), int(rec.get("ttl") or 0))
            for rec in self._native_records()
        )

    def add_record(self, record: Record) -> None:
        name = self.parse_name(record.fqdn)
        for target in record.targets:
            payload: Dict[str, Any] = {"name": name, "type": record.record_type, "content": target}
            if record.ttl:
                payload["ttl"] = record.ttl
            self._request("POST", self._records_path, operation="create record", fqdn=record.fqdn, json=payload)
            logger.info(f"Added DNS record: {record.name} {record.record_type} -> {target}")

    def remove_record(self, record: Record) -> None:
        name = self.parse_name(record.fqdn)
        for rec in self._native_records():
            if (rec.get("name") or "") != name or rec.get("type") != record.record_type:
                continue
            self._request(
                "DELETE",
                f"{self._records_path}/{rec['id']}",
                operation="delete record",
                fqdn=record.fqdn,
            )
            logger.info(f"Deleted DNS record: {record.name} {record.record_type} -> {rec.get('content')}")
