from __future__ import annotations

from typing import Protocol

from proxyplane.graph.expressions import InstanceKey
from proxyplane.state.models import StateRecord


class StateStore(Protocol):
    """Durable record of last-applied attributes per resource instance.

    Implementations must allow concurrent writes to distinct keys.
    """

    async def get(self, key: InstanceKey) -> StateRecord | None:
        ...

    async def put(self, record: StateRecord) -> None:
        ...

    async def delete(self, key: InstanceKey) -> None:
        ...

    async def list(self) -> list[StateRecord]:
        ...

    async def close(self) -> None:
        ...
