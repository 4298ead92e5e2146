"""DigitalOcean DNS provider.

Environment variables:
    DO_PAT                 Personal access token (required)
    DO_API_URL             API base URL (default: https://api.digitalocean.com/v2)
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List

from kube_external_dns.errors import BackendCallError, ConfigurationError, ZoneNotFoundError
from kube_external_dns.providers.base import HTTPProvider, require_env, status_code
from kube_external_dns.ratelimit import TokenBucket
from kube_external_dns.records import Record, aggregate, in_zone, normalize

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.digitalocean.com/v2"

# DigitalOcean has no per-record TTL; every record reports the domain TTL.
TTL = 120

PAGE_SIZE = 200

# The API allows 5000 requests per hour.
RATE_PER_SECOND = 5000.0 / 3600.0
BURST = 100

APEX = "@"


class DigitalOceanProvider(HTTPProvider):
    """DigitalOcean v2 API implementation.

    Record names are relative to the domain, with ``@`` for the apex. Listing
    is paginated and every call goes through a token bucket.
    """

    def __init__(self) -> None:
        super().__init__()
        self._limiter = TokenBucket(RATE_PER_SECOND, BURST)

    @property
    def name(self) -> str:
        return "DigitalOcean"

    def init(self, root_domain: str) -> None:
        creds = require_env("DO_PAT")
        self._set_root(root_domain)
        self._base_url = os.getenv("DO_API_URL", DEFAULT_API_URL).rstrip("/")
        self._session.headers.update(
            {
                "Authorization": f"Bearer {creds['DO_PAT']}",
                "Content-Type": "application/json",
            }
        )

        account = self._request("GET", "/account", operation="get account") or {}
        email = (account.get("account") or {}).get("email", "")

        try:
            domain = self._request("GET", f"/domains/{self.root_domain}", operation="get domain") or {}
        except BackendCallError as e:
            if status_code(e) == 404:
                raise ZoneNotFoundError(f"Zone for '{self.root_domain}' not found") from e
            raise

        domain_name = (domain.get("domain") or {}).get("name", self.root_domain)
        logger.info(f"Configured {self.name} with email {email} and domain {domain_name}")

    def health_check(self) -> None:
        self._request("GET", f"/domains/{self.root_domain}", operation="get domain")

    def name_to_fqdn(self, name: str) -> str:
        if not name or name == APEX:
            return normalize(self.root_domain)
        return normalize(f"{name}.{self.root_domain}")

    def fqdn_to_name(self, fqdn: str) -> str:
        """Return the domain-relative name for ``fqdn`` ("@" for the apex).

        Raises:
            ConfigurationError: ``fqdn`` is not inside the domain.
        """
        fqdn = normalize(fqdn)
        root = normalize(self.root_domain)
        if not in_zone(fqdn, root):
            raise ConfigurationError(f"{fqdn} is not inside domain {self.root_domain}")
        if fqdn == root:
            return APEX
        return fqdn[: -len(root) - 1]

    def fetch_records(self) -> List[Dict[str, Any]]:
        """Retrieve every record of the domain, following pagination."""
        records: List[Dict[str, Any]] = []
        page = 1
        while True:
            body = self._request(
                "GET",
                f"/domains/{self.root_domain}/records",
                operation="list records",
                params={"page": page, "per_page": PAGE_SIZE},
            ) or {}
            batch = body.get("domain_records") or []
            records.extend(batch)

            pages = (body.get("links") or {}).get("pages") or {}
            if not batch or not pages.get("next"):
                break
            page += 1

        logger.debug(f"Fetched {len(records)} DO records")
        return records

    def get_records(self) -> List[Record]:
        return aggregate(
            (self.name_to_fqdn(rec.get("name", "")), rec["type"], rec.get("data", ""), TTL)
            for rec in self.fetch_records()
        )

    def add_record(self, record: Record) -> None:
        name = self.fqdn_to_name(record.fqdn)
        for target in record.targets:
            payload = {"type": record.record_type, "name": name, "data": target}
            logger.debug(f"Creating record: {payload}")
            self._request(
                "POST",
                f"/domains/{self.root_domain}/records",
                operation="create record",
                fqdn=record.fqdn,
                json=payload,
            )
            logger.info(f"Added DNS record: {record.name} {record.record_type} -> {target}")

    def remove_record(self, record: Record) -> None:
        for rec in self.fetch_records():
            if self.name_to_fqdn(rec.get("name", "")) != record.fqdn or rec.get("type") != record.record_type:
                continue
            logger.debug(f"Deleting record: {rec}")
            self._request(
                "DELETE",
                f"/domains/{self.root_domain}/records/{rec['id']}",
                operation="delete record",
                fqdn=record.fqdn,
            )
            logger.info(f"Deleted DNS record: {record.name} {record.record_type} -> {rec.get('data')}")
