"""
Tenant-keyed configuration store.

Read-mostly maps (timeouts, guardrail config, search config) are shared across
requests. Writers build a new mapping under a lock and swap the reference, so
a reader always sees either the old or the new snapshot and never blocks.

Usage:
    store = TenantConfigStore(default=TimeoutConfig())
    store.put("acme", TimeoutConfig(vector_search=2000))
    store.get("acme")       # tenant override
    store.get("unknown")    # falls back to the default entry
"""

from __future__ import annotations

import threading
from types import MappingProxyType
from typing import Callable, Dict, Generic, Iterator, Mapping, Optional, TypeVar

from src.shared.observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_TENANT = "default"


class TenantConfigStore(Generic[T]):
    """Copy-on-write key-value store keyed by tenant id."""

    def __init__(
        self,
        default: T,
        initial: Optional[Mapping[str, T]] = None,
        name: str = "config",
    ) -> None:
        self.name = name
        entries: Dict[str, T] = {DEFAULT_TENANT: default}
        if initial:
            entries.update(initial)
        self._snapshot: Mapping[str, T] = MappingProxyType(entries)
        self._write_lock = threading.Lock()

    def get(self, tenant_id: Optional[str]) -> T:
        """Return the tenant's entry, or the default entry for unknown tenants."""
        snapshot = self._snapshot
        if tenant_id and tenant_id in snapshot:
            return snapshot[tenant_id]
        return snapshot[DEFAULT_TENANT]

    def has(self, tenant_id: str) -> bool:
        return tenant_id in self._snapshot

    def snapshot(self) -> Mapping[str, T]:
        """Read-only view of every entry at this instant."""
        return self._snapshot

    def put(self, tenant_id: str, value: T) -> Optional[T]:
        """Atomically replace a tenant's entry. Returns the previous entry."""
        with self._write_lock:
            entries = dict(self._snapshot)
            previous = entries.get(tenant_id)
            entries[tenant_id] = value
            self._snapshot = MappingProxyType(entries)
        logger.debug("tenant_config_replaced", store=self.name, tenant_id=tenant_id)
        return previous

    def update(self, tenant_id: str, fn: Callable[[T], T]) -> T:
        """Replace a tenant's entry with ``fn(current)`` under the write lock."""
        with self._write_lock:
            entries = dict(self._snapshot)
            current = entries.get(tenant_id, entries[DEFAULT_TENANT])
            updated = fn(current)
            entries[tenant_id] = updated
            self._snapshot = MappingProxyType(entries)
        return updated

    def remove(self, tenant_id: str) -> Optional[T]:
        if tenant_id == DEFAULT_TENANT:
            raise ValueError("The default entry cannot be removed")
        with self._write_lock:
            entries = dict(self._snapshot)
            previous = entries.pop(tenant_id, None)
            self._snapshot = MappingProxyType(entries)
        return previous

    def __iter__(self) -> Iterator[str]:
        return iter(self._snapshot)

    def __len__(self) -> int:
        return len(self._snapshot)
