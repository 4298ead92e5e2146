"""Cloudflare DNS provider.

Environment variables:
    CLOUDFLARE_EMAIL       Account email (required)
    CLOUDFLARE_KEY         Global API key (required)
    CLOUDFLARE_API_URL     API base URL (default: https://api.cloudflare.com/client/v4)
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

from kube_external_dns.errors import BackendCallError, ConfigurationError, ZoneNotFoundError
from kube_external_dns.providers.base import HTTPProvider, require_env
from kube_external_dns.records import Record, aggregate, denormalize, in_zone

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.cloudflare.com/client/v4"
MIN_TTL = 120
MAX_TTL = 86400
PAGE_SIZE = 50


def sanitize_ttl(record: Record) -> int:
    """Clamp the TTL into the range Cloudflare accepts (120..86400)."""
    if record.ttl < MIN_TTL:
        logger.warning(f"{record.fqdn}: Setting TTL to {MIN_TTL} seconds")
        return MIN_TTL
    if record.ttl > MAX_TTL:
        logger.warning(f"{record.fqdn}: Adjusting TTL to {MAX_TTL} seconds")
        return MAX_TTL
    return record.ttl


class CloudflareProvider(HTTPProvider):
    """Cloudflare v4 API implementation.

    The zone is resolved once in :meth:`init` by listing every zone and
    matching the root domain name exactly.
    """

    def __init__(self) -> None:
        super().__init__()
        self.zone: Optional[Dict[str, Any]] = None

    @property
    def name(self) -> str:
        return "CloudFlare"

    def init(self, root_domain: str) -> None:
        creds = require_env("CLOUDFLARE_EMAIL", "CLOUDFLARE_KEY")
        self._set_root(root_domain)
        self._base_url = os.getenv("CLOUDFLARE_API_URL", DEFAULT_API_URL).rstrip("/")
        self._session.headers.update(
            {
                "X-Auth-Email": creds["CLOUDFLARE_EMAIL"],
                "X-Auth-Key": creds["CLOUDFLARE_KEY"],
                "Content-Type": "application/json",
            }
        )

        self.zone = None
        for zone in self._list("/zones", operation="list zones"):
            if zone.get("name") == self.root_domain:
                self.zone = zone
                break
        if self.zone is None:
            raise ZoneNotFoundError(f"Zone {self.root_domain} does not exist")

        logger.info(f"Configured {self.name} with zone '{self.root_domain}'")

    @property
    def _zone_path(self) -> str:
        return f"/zones/{self.zone['id']}"

    def _call(self, method: str, path: str, *, operation: str, fqdn: str = "", **kwargs: Any) -> Dict[str, Any]:
        body = self._request(method, path, operation=operation, fqdn=fqdn, **kwargs) or {}
        if not body.get("success", False):
            errors = body.get("errors") or []
            message = "; ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
            raise BackendCallError(
                message or "API call has failed", provider=self.name, operation=operation, fqdn=fqdn
            )
        return body

    def _list(self, path: str, *, operation: str) -> List[Dict[str, Any]]:
        """Fetch every page of a list endpoint."""
        results: List[Dict[str, Any]] = []
        page = 1
        while True:
            body = self._call(
                "GET", path, operation=operation, params={"page": page, "per_page": PAGE_SIZE}
            )
            items = body.get("result") or []
            results.extend(items)
            total_pages = (body.get("result_info") or {}).get("total_pages") or 1
            if not items or page >= total_pages:
                return results
            page += 1

    def health_check(self) -> None:
        self._call("GET", self._zone_path, operation="zone details")

    def _native_records(self) -> List[Dict[str, Any]]:
        return self._list(f"{self._zone_path}/dns_records", operation="list records")

    def get_records(self) -> List[Record]:
        return aggregate(
            (rec["name"], rec["type"], rec["content"], int(rec.get("ttl") or 0))
            for rec in self._native_records()
        )

    def add_record(self, record: Record) -> None:
        if not in_zone(record.fqdn, self.root_domain):
            raise ConfigurationError(f"{record.fqdn} is not inside zone {self.root_domain}")
        ttl = sanitize_ttl(record)
        for target in record.targets:
            payload = {
                "type": record.record_type,
                "name": record.name,
                "content": target,
                "ttl": ttl,
            }
            self._call(
                "POST",
                f"{self._zone_path}/dns_records",
                operation="create record",
                fqdn=record.fqdn,
                json=payload,
            )
            logger.info(f"Added DNS record: {record.name} {record.record_type} -> {target}")

    def _find_records(self, record: Record) -> List[Dict[str, Any]]:
        name = record.name
        return [
            rec
            for rec in self._native_records()
            if denormalize(rec.get("name", "")) == name and rec.get("type") == record.record_type
        ]

    def remove_record(self, record: Record) -> None:
        for rec in self._find_records(record):
            self._call(
                "DELETE",
                f"{self._zone_path}/dns_records/{rec['id']}",
                operation="delete record",
                fqdn=record.fqdn,
            )
            logger.info(f"Deleted DNS record: {record.name} {record.record_type} -> {rec.get('content')}")
