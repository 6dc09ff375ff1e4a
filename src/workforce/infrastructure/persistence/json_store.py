"""
Buffered JSON Store

Keyed JSON persistence for the in-memory services. ``save()`` only buffers
the latest snapshot of a key and schedules a debounced background flush;
``flush()`` writes every buffered key and is awaited on critical transitions
(task completion, cancellation, plan decisions) and at shutdown.

Each key lives in ``<work_dir>/<key>.json``. Writes go to a temporary file
that replaces the target atomically, serialized per key with an asyncio.Lock.
Write failures are logged and never reach the caller; the in-memory state
stays authoritative.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import structlog

from workforce.core.domain.errors import PersistenceError
from workforce.core.domain.supervisor import BackgroundTaskSupervisor


class BufferedJsonStore:
    """Write-behind JSON files with an explicit awaited flush."""

    def __init__(
        self,
        work_dir: str = ".workforce",
        flush_interval: float = 0.5,
        supervisor: Optional[BackgroundTaskSupervisor] = None,
    ):
        """
        Args:
            work_dir: Directory holding one JSON file per key
            flush_interval: Debounce delay of background flushes in seconds
                (0 disables them; only explicit ``flush()`` writes)
            supervisor: Owner of the background flush task
        """
        self.work_dir = Path(work_dir)
        self.work_dir.mkdir(parents=True, exist_ok=True)
        self.flush_interval = flush_interval
        self.supervisor = supervisor
        self._pending: Dict[str, Any] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._flush_task: Optional[asyncio.Task] = None
        self.logger = structlog.get_logger().bind(component="json_store")

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def _path(self, key: str) -> Path:
        return self.work_dir / f"{key}.json"

    @property
    def pending_keys(self) -> list[str]:
        return list(self._pending)

    async def load(self, key: str) -> Optional[Any]:
        """Buffered value if any, else the file content; None when missing or unreadable."""
        if key in self._pending:
            return self._pending[key]
        path = self._path(key)
        if not path.exists():
            return None
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                content = await f.read()
            return json.loads(content)
        except (OSError, ValueError) as e:
            self.logger.error("store_load_failed", key=key, error=str(e))
            return None

    def save(self, key: str, data: Any) -> None:
        self._pending[key] = data
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self.flush_interval <= 0:
            return
        if self._flush_task is not None and not self._flush_task.done():
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Outside the event loop, the next awaited flush() writes it
            return
        coro = self._delayed_flush()
        if self.supervisor is not None:
            self._flush_task = self.supervisor.spawn(coro, name="store_flush")
        else:
            self._flush_task = asyncio.create_task(coro)

    async def _delayed_flush(self) -> None:
        await asyncio.sleep(self.flush_interval)
        await self.flush()
        if self._pending:
            # Saved while the write above was running
            self._flush_task = None
            self._schedule_flush()

    async def flush(self) -> None:
        """Write every buffered key. Failures are logged per key."""
        pending, self._pending = self._pending, {}
        for key, data in pending.items():
            try:
                await self._write(key, data)
            except PersistenceError as e:
                self.logger.error("store_flush_failed", key=key, error=e.message)

    async def _write(self, key: str, data: Any) -> None:
        async with self._get_lock(key):
            path = self._path(key)
            tmp_path = path.with_suffix(".json.tmp")
            try:
                payload = json.dumps(data, ensure_ascii=False, indent=2, default=str)
                async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                    await f.write(payload)
                os.replace(tmp_path, path)
            except (OSError, TypeError, ValueError) as e:
                raise PersistenceError(f"Could not write {path.name}: {e}") from e
        self.logger.debug("store_written", key=key)

    async def close(self) -> None:
        """Cancel the pending debounce and write everything that is buffered."""
        if self._flush_task is not None and not self._flush_task.done():
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
        await self.flush()
