"""Persistent store protocol for keyed JSON-serializable records."""

from typing import Any, Protocol


class StoreProtocol(Protocol):
    async def load(self, key: str) -> Any | None:
        """Return the stored record or None when missing/unreadable."""
        ...

    def save(self, key: str, data: Any) -> None:
        """Buffer a write. Not durable until ``flush()`` completes."""
        ...

    async def flush(self) -> None:
        """Write every buffered record."""
        ...
