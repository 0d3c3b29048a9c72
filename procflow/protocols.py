"""
Protocols for the boundaries procflow does not own.

Persistence lives outside the engine: the runtime hands out serialisable
instance snapshots and accepts them back, and an InstanceStore decides
where they go.
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class InstanceStore(Protocol):
    """
    Storage for workflow instance snapshots.

    Snapshots are the camelCase dicts produced by ``WorkflowInstance.to_dict``.
    """

    async def load_instance(self, instance_id: str) -> Optional[Dict[str, Any]]:
        """Return the stored snapshot, or None if the id is unknown."""
        ...

    async def save_instance(self, snapshot: Dict[str, Any]) -> None:
        """Store a snapshot, replacing any previous one with the same id."""
        ...


class MemoryInstanceStore:
    """Process-local InstanceStore, mostly useful in tests and the CLI."""

    def __init__(self):
        self._snapshots: Dict[str, Dict[str, Any]] = {}

    async def load_instance(self, instance_id: str) -> Optional[Dict[str, Any]]:
        return self._snapshots.get(instance_id)

    async def save_instance(self, snapshot: Dict[str, Any]) -> None:
        self._snapshots[snapshot["id"]] = snapshot

    def list_ids(self) -> List[str]:
        return list(self._snapshots.keys())
