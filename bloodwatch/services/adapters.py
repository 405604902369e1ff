"""
Data source adapter contract and registry.

Adapters fetch and normalize third-party payloads into a `Snapshot`;
retrying the remote fetch is their own concern. The ingestion cycle only
looks adapters up by key.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List

from bloodwatch.services.contracts import RegionRef, Snapshot
from bloodwatch.utils.exceptions import AdapterError, AdapterNotRegisteredError


class BaseSnapshotAdapter(ABC):
    """Abstract base class for data source adapters."""

    adapter_key: str = ""

    @abstractmethod
    async def fetch_latest(self) -> Snapshot:
        """
        Fetch the latest snapshot from the source.

        Raises:
            AdapterError: If the source could not be read
        """

    async def available_regions(self) -> List[RegionRef]:
        """Regions the source can report on; defaults to those in the latest snapshot."""
        snapshot = await self.fetch_latest()
        seen: Dict[str, RegionRef] = {}
        for item in snapshot.items:
            seen.setdefault(item.region.key, item.region)
        return sorted(seen.values(), key=lambda region: region.key)


class AdapterRegistry:
    """
    Registry of snapshot adapters keyed by adapter key.

    Provides registration and lookup with a dedicated error for unknown
    source keys so callers can tell configuration problems from fetch
    failures.
    """

    def __init__(self, adapters: Iterable[BaseSnapshotAdapter] = ()):
        self._adapters: Dict[str, BaseSnapshotAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: BaseSnapshotAdapter) -> None:
        """
        Register an adapter under its key.

        Args:
            adapter: Adapter instance with a non-empty `adapter_key`

        Raises:
            TypeError: If adapter doesn't inherit from BaseSnapshotAdapter
            AdapterError: If the adapter has no key
        """
        if not isinstance(adapter, BaseSnapshotAdapter):
            raise TypeError("Adapter must inherit from BaseSnapshotAdapter")
        key = (adapter.adapter_key or "").strip()
        if not key:
            raise AdapterError(f"Adapter {type(adapter).__name__} has no adapter key")
        self._adapters[key] = adapter

    def get(self, adapter_key: str) -> BaseSnapshotAdapter:
        key = (adapter_key or "").strip()
        if key not in self._adapters:
            raise AdapterNotRegisteredError(
                f"No adapter registered for '{adapter_key}'", adapter_key=adapter_key
            )
        return self._adapters[key]

    def keys(self) -> List[str]:
        return sorted(self._adapters)

    def __contains__(self, adapter_key: object) -> bool:
        return adapter_key in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)


# Process-wide registry; deployments register their adapters at startup.
default_adapter_registry = AdapterRegistry()
