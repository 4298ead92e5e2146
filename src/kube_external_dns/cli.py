#!/usr/bin/env python3
"""kube-external-dns - DNS record reconciliation

Keeps DNS records at third-party providers in line with a desired-state file.
Each desired record names a provider, a root domain, a hostname and the target
addresses it should resolve to; records removed from the file are deleted from
the provider.

Supported DNS Providers:
    - cloudflare: Cloudflare (CLOUDFLARE_EMAIL, CLOUDFLARE_KEY)
    - digitalocean: DigitalOcean (DO_PAT)
    - dnsimple: DNSimple (DNSIMPLE_TOKEN, optional DNSIMPLE_ACCOUNT_ID)

Environment variables:

    Desired state:
        DESIRED_STATE_PATH     YAML file, or directory of *.yaml files
                               (default: /config/records.yaml)
                               Example file:
                                 records:
                                   - provider: cloudflare
                                     root_domain: example.com
                                     fqdn: svc.ns.example.com
                                     targets: ["1.2.3.4"]
                                   - provider: dnsimple
                                     root_domain: example.org
                                     name: api
                                     namespace: prod          # -> api.prod.example.org
                                     targets: ["5.6.7.8", "5.6.7.9"]
                                     type: A
                                     ttl: 300
                                   - provider: digitalocean
                                     root_domain: example.net
                                     sub_domain: www          # -> www.example.net
                                     targets: ["9.9.9.9"]

    Runtime:
        SYNC_MODE              "once", "watch" (polling loop) or "check"
                               (provider health check) (default: watch)
        POLL_INTERVAL_SECONDS  Poll interval in watch mode (default: 60)
        WORKERS                Reconciliation worker threads (default: 4)
        QUEUE_SIZE             Pending reconciliation tasks (default: 100)
        LOG_LEVEL              DEBUG, INFO, WARNING, ERROR (default: INFO)
        STATE_PATH             JSON state file path (default: /data/state.json)
"""

from __future__ import annotations

import logging
import os
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import yaml

from kube_external_dns.dispatcher import DeleteTask, Dispatcher, Task, UpsertTask
from kube_external_dns.errors import ConfigurationError, ExternalDNSError, NotFoundError
from kube_external_dns.providers import Registry, default_registry
from kube_external_dns.reconciler import ReconcileResult, Reconciler
from kube_external_dns.records import DEFAULT_RECORD_TYPE, denormalize, in_zone, normalize
from kube_external_dns.state import StateStore, record_key, snapshot

# =============================================================================
# File Watching Utilities
# =============================================================================


def get_config_file_mtime(config_path: str) -> float:
    """Get modification time of config file, returns 0 if file doesn't exist."""
    try:
        return os.path.getmtime(config_path) if os.path.exists(config_path) else 0.0
    except OSError:
        return 0.0


def find_config_files(config_path: str) -> List[str]:
    """Find all .yaml config files in directory or return single file.

    Args:
        config_path: Path to config file or directory

    Returns:
        List of config file paths (excluding .template files)
    """
    path = Path(config_path)

    if path.is_file():
        return [str(path)]

    if path.is_dir():
        yaml_files = sorted(path.glob("*.yaml"))
        return [str(f) for f in yaml_files if not f.name.endswith(".template")]

    return []


def get_config_files_mtimes(config_files: List[str]) -> Dict[str, float]:
    """Get modification times for all config files."""
    return {f: get_config_file_mtime(f) for f in config_files}


# =============================================================================
# Configuration
# =============================================================================

DESIRED_STATE_PATH = os.getenv("DESIRED_STATE_PATH", "/config/records.yaml")
STATE_PATH = os.getenv("STATE_PATH", "/data/state.json")
SYNC_MODE = os.getenv("SYNC_MODE", "watch").lower().strip()
POLL_INTERVAL_SECONDS = int(os.getenv("POLL_INTERVAL_SECONDS", "60"))
WORKERS = int(os.getenv("WORKERS", "4"))
QUEUE_SIZE = int(os.getenv("QUEUE_SIZE", "100"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

SYNC_MODES = ("once", "watch", "check")

# =============================================================================
# Logging Setup
# =============================================================================

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Desired State
# =============================================================================


@dataclass(frozen=True)
class DesiredRecord:
    """A record that should exist at a provider."""

    provider: str
    root_domain: str
    fqdn: str
    targets: Tuple[str, ...]
    record_type: str = DEFAULT_RECORD_TYPE
    ttl: int = 0
    subject: str = ""

    @property
    def key(self) -> str:
        return record_key(self.provider, self.root_domain, self.fqdn, self.record_type)


def _derive_fqdn(item: Dict[str, Any], root_domain: str) -> str:
    """Work out the record name: fqdn, else sub_domain.root, else name.namespace.root."""
    fqdn = str(item.get("fqdn") or "").strip()
    if fqdn:
        return normalize(fqdn)

    sub_domain = str(item.get("sub_domain") or "").strip()
    if not sub_domain:
        name = str(item.get("name") or "").strip()
        namespace = str(item.get("namespace") or "").strip()
        if not name or not namespace:
            return ""
        sub_domain = f"{name}.{namespace}"
    return normalize(f"{sub_domain}.{root_domain}")


def _parse_targets(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return ()
    return tuple(str(v).strip() for v in value if str(v).strip())


def parse_desired_entry(item: Any) -> Tuple[Optional[DesiredRecord], str]:
    """Parse one entry of the ``records`` list.

    Returns:
        ``(record, "")`` for a usable entry, ``(None, key)`` for a valid entry
        without targets yet, ``(None, "")`` for a malformed one.
    """
    if not isinstance(item, dict):
        logger.warning(f"Skipping malformed record entry: {item}")
        return None, ""

    provider = str(item.get("provider") or "").lower().strip()
    root_domain = denormalize(str(item.get("root_domain") or "").strip())
    if not provider:
        logger.warning(f"Skipping record entry without provider: {item}")
        return None, ""
    if not root_domain:
        logger.warning(f"Skipping record entry without root_domain: {item}")
        return None, ""

    fqdn = _derive_fqdn(item, root_domain)
    if not fqdn:
        logger.warning(f"Skipping record entry without fqdn, sub_domain or name/namespace: {item}")
        return None, ""
    if not in_zone(fqdn, root_domain):
        logger.warning(f"Skipping record entry {fqdn}: not inside root_domain {root_domain}")
        return None, ""

    record_type = str(item.get("type") or DEFAULT_RECORD_TYPE).upper().strip()
    subject = str(item.get("name") or denormalize(fqdn))
    try:
        ttl = int(item.get("ttl") or 0)
    except (TypeError, ValueError):
        logger.warning(f"{subject}: invalid ttl {item.get('ttl')!r}, using provider default")
        ttl = 0

    targets = _parse_targets(item.get("targets"))
    if not targets:
        logger.warning(f"{subject}: does not have valid targets, this could mean it's just not ready yet")
        return None, record_key(provider, root_domain, fqdn, record_type)

    return (
        DesiredRecord(
            provider=provider,
            root_domain=root_domain,
            fqdn=fqdn,
            targets=targets,
            record_type=record_type,
            ttl=ttl,
            subject=subject,
        ),
        "",
    )


def load_desired_records(config_path: str) -> Tuple[List[DesiredRecord], Set[str]]:
    """Load every desired record from a YAML file or directory.

    Returns:
        ``(records, pending_keys)`` where ``pending_keys`` identifies entries
        that exist but have no targets yet; their live records are left alone.

    Raises:
        ConfigurationError: No file was found or a file could not be parsed.
            Nothing may be deleted from providers in that case.
    """
    config_files = find_config_files(config_path)
    if not config_files:
        raise ConfigurationError(f"No desired state found at {config_path}")

    records: Dict[str, DesiredRecord] = {}
    pending: Set[str] = set()
    for config_file in config_files:
        try:
            with open(config_file, "r") as f:
                config_data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load desired state from {config_file}: {e}") from e

        if config_data is None:
            raise ConfigurationError(
                f"Desired state file {config_file} is empty; use 'records: []' to remove every record"
            )
        if not isinstance(config_data, dict) or not isinstance(config_data.get("records", []), list):
            raise ConfigurationError(f"Desired state file {config_file} must hold a 'records' list")

        for item in config_data.get("records") or []:
            record, pending_key = parse_desired_entry(item)
            if pending_key:
                pending.add(pending_key)
            if record is None:
                continue
            if record.key in records:
                logger.warning(f"Duplicate desired record {record.fqdn} ({record.record_type}), last one wins")
            records[record.key] = record

    logger.debug(f"Loaded {len(records)} desired record(s) from {len(config_files)} file(s)")
    return list(records.values()), pending


# =============================================================================
# Core Syncer
# =============================================================================


class ExternalDNSSyncer:
    def __init__(
        self,
        *,
        reconciler: Reconciler,
        state_store: StateStore,
        desired_path: str,
        workers: int = 4,
        queue_size: int = 100,
    ):
        self.reconciler = reconciler
        self.state_store = state_store
        self.desired_path = desired_path
        self.workers = workers
        self.queue_size = queue_size

    def sync_once(self) -> Dict[str, int]:
        """Upsert every desired record and delete the ones no longer desired.

        Returns:
            Counters: ``changed``, ``unchanged``, ``deleted`` and ``failed``.
        """
        now = int(time.time())
        desired, pending = load_desired_records(self.desired_path)
        state = self.state_store.load()
        records_state: Dict[str, Any] = state["records"]

        stats = {"changed": 0, "unchanged": 0, "deleted": 0, "failed": 0}
        lock = threading.Lock()
        keys: Dict[Task, str] = {}

        def on_result(task: Task, result: Optional[ReconcileResult], error: Optional[Exception]) -> None:
            key = keys[task]
            with lock:
                if isinstance(task, UpsertTask):
                    if result is None:
                        stats["failed"] += 1
                        return
                    stats["changed" if result.changed else "unchanged"] += 1
                    records_state[key] = snapshot(task.provider, task.root_domain, result.record, now)
                    return

                if isinstance(error, NotFoundError):
                    logger.warning(f"{task.fqdn}: already absent at {task.provider}, forgetting it")
                    records_state.pop(key, None)
                elif result is not None:
                    stats["deleted"] += 1
                    records_state.pop(key, None)
                else:
                    stats["failed"] += 1

        tasks: List[Task] = []
        for record in desired:
            task = UpsertTask(
                provider=record.provider,
                root_domain=record.root_domain,
                fqdn=record.fqdn,
                targets=record.targets,
                record_type=record.record_type,
                ttl=record.ttl,
                subject=record.subject,
            )
            keys[task] = record.key
            tasks.append(task)

        desired_keys = {r.key for r in desired} | pending
        for key, entry in sorted(records_state.items()):
            if key in desired_keys:
                continue
            task = DeleteTask(
                provider=entry.get("provider", ""),
                root_domain=entry.get("root_domain", ""),
                fqdn=entry.get("fqdn", ""),
                record_type=entry.get("type", DEFAULT_RECORD_TYPE),
            )
            keys[task] = key
            tasks.append(task)

        dispatcher = Dispatcher(
            self.reconciler, workers=self.workers, maxsize=self.queue_size, on_result=on_result
        )
        try:
            for task in tasks:
                dispatcher.submit(task)
            dispatcher.join()
        finally:
            dispatcher.stop()

        self.state_store.save(state)
        logger.info(
            f"Sync complete: {stats['changed']} changed, {stats['unchanged']} unchanged, "
            f"{stats['deleted']} deleted, {stats['failed']} failed"
        )
        return stats

    def check_health(self) -> bool:
        """Run health_check on every provider referenced by the desired state."""
        desired, _ = load_desired_records(self.desired_path)
        ok = True
        for provider_name, root_domain in sorted({(r.provider, r.root_domain) for r in desired}):
            try:
                provider = self.reconciler.provider(provider_name, root_domain)
                provider.health_check()
                logger.info(f"{provider.name} ({root_domain}) is healthy")
            except ExternalDNSError as e:
                logger.error(f"{provider_name} ({root_domain}) health check failed: {e}")
                ok = False
        return ok


# =============================================================================
# Main
# =============================================================================


def validate_config(registry: Registry) -> bool:
    """Validate configuration."""
    errors = []

    if SYNC_MODE not in SYNC_MODES:
        errors.append(f"Invalid SYNC_MODE: {SYNC_MODE}. Use one of: {', '.join(SYNC_MODES)}")
    if POLL_INTERVAL_SECONDS < 1:
        errors.append("POLL_INTERVAL_SECONDS must be positive")
    if WORKERS < 1:
        errors.append("WORKERS must be at least 1")

    try:
        desired, _ = load_desired_records(DESIRED_STATE_PATH)
        for provider_name in sorted({r.provider for r in desired}):
            if provider_name not in registry:
                errors.append(
                    f"Unsupported DNS provider: '{provider_name}'. "
                    f"Supported providers: {', '.join(registry.names())}"
                )
    except ConfigurationError as e:
        errors.append(str(e))

    if errors:
        for error in errors:
            logger.error(error)
        return False

    return True


def main():
    """Main entry point."""
    registry = default_registry()
    logger.info(f"kube-external-dns: providers {', '.join(registry.names())}")

    if not validate_config(registry):
        logger.error("Configuration validation failed")
        sys.exit(1)

    logger.info(f"Desired state: {DESIRED_STATE_PATH}")
    logger.info(f"Sync mode: {SYNC_MODE}")

    syncer = ExternalDNSSyncer(
        reconciler=Reconciler(registry, cache_providers=True),
        state_store=StateStore(STATE_PATH),
        desired_path=DESIRED_STATE_PATH,
        workers=WORKERS,
        queue_size=QUEUE_SIZE,
    )

    try:
        if SYNC_MODE == "check":
            if not syncer.check_health():
                sys.exit(1)
            return

        if SYNC_MODE == "once":
            stats = syncer.sync_once()
            if stats["failed"]:
                sys.exit(1)
            return

        logger.info(f"Poll interval: {POLL_INTERVAL_SECONDS}s")
        config_files = find_config_files(DESIRED_STATE_PATH)
        last_config_mtimes = get_config_files_mtimes(config_files)
        last_sync: Optional[float] = None

        while True:
            current_config_files = find_config_files(DESIRED_STATE_PATH)
            current_mtimes = get_config_files_mtimes(current_config_files)
            files_changed = (
                set(current_config_files) != set(config_files) or current_mtimes != last_config_mtimes
            )
            if files_changed:
                changed = sorted(
                    {Path(f).name for f in set(current_config_files) ^ set(config_files)}
                    | {Path(f).name for f in current_config_files if current_mtimes.get(f) != last_config_mtimes.get(f)}
                )
                logger.info(f"Desired state change detected in: {', '.join(changed)}")
                config_files = current_config_files
                last_config_mtimes = current_mtimes

            if files_changed or last_sync is None or time.monotonic() - last_sync >= POLL_INTERVAL_SECONDS:
                try:
                    syncer.sync_once()
                except ConfigurationError as e:
                    logger.error(f"Skipping sync: {e}")
                    logger.warning("Continuing with previous configuration")
                last_sync = time.monotonic()

            time.sleep(min(5, POLL_INTERVAL_SECONDS))

    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
