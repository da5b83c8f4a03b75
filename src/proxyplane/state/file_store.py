from __future__ import annotations

import asyncio
import json
import os
from collections import defaultdict
from pathlib import Path
from typing import Any

import structlog

from proxyplane.core.errors import StateError
from proxyplane.graph.expressions import InstanceKey
from proxyplane.state.models import StateRecord

logger = structlog.get_logger()

DEFAULT_STATE_PATH = Path("proxyplane.state.json")
STATE_VERSION = 1


class JsonFileStateStore:
    """State store persisted as a single JSON document.

    Records are cached in memory; each mutation rewrites the document
    atomically (temp file + rename) under a store-wide write lock. File I/O
    runs in a worker thread so the event loop keeps scheduling instances.
    Mutations of one key are serialised by a per-key lock.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or DEFAULT_STATE_PATH
        self._records: dict[str, StateRecord] | None = None
        self._key_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._write_lock = asyncio.Lock()
        self._load_lock = asyncio.Lock()

    async def _load(self) -> dict[str, StateRecord]:
        if self._records is None:
            async with self._load_lock:
                if self._records is None:
                    self._records = await asyncio.to_thread(self._read)
        return self._records

    def _read(self) -> dict[str, StateRecord]:
        records: dict[str, StateRecord] = {}
        if self.path.exists():
            try:
                data = json.loads(self.path.read_text())
            except (OSError, json.JSONDecodeError) as e:
                raise StateError(
                    f"Cannot read state file {self.path}: {e}", details={"path": str(self.path)}
                ) from e
            version = data.get("version", STATE_VERSION)
            if version != STATE_VERSION:
                raise StateError(f"Unsupported state version {version}", details={"path": str(self.path)})
            for raw in data.get("records", []):
                record = StateRecord.from_dict(raw)
                records[str(record.key)] = record
            logger.debug("state_loaded", path=str(self.path), records=len(records))
        return records

    async def _flush(self, records: dict[str, StateRecord]) -> None:
        payload: dict[str, Any] = {
            "version": STATE_VERSION,
            "records": [record.to_dict() for record in records.values()],
        }
        await asyncio.to_thread(self._write, json.dumps(payload, indent=2, sort_keys=True) + "\n")

    def _write(self, text: str) -> None:
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(text)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StateError(
                f"Cannot write state file {self.path}: {e}", details={"path": str(self.path)}
            ) from e

    async def get(self, key: InstanceKey) -> StateRecord | None:
        return (await self._load()).get(str(key))

    async def put(self, record: StateRecord) -> None:
        name = str(record.key)
        async with self._key_locks[name]:
            async with self._write_lock:
                records = await self._load()
                records[name] = record
                await self._flush(records)
        logger.debug("state_record_written", key=name)

    async def delete(self, key: InstanceKey) -> None:
        name = str(key)
        async with self._key_locks[name]:
            async with self._write_lock:
                records = await self._load()
                if records.pop(name, None) is not None:
                    await self._flush(records)
        logger.debug("state_record_removed", key=name)

    async def list(self) -> list[StateRecord]:
        return list((await self._load()).values())

    async def close(self) -> None:
        return None
