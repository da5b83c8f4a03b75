from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from proxyplane.graph.expressions import InstanceKey


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StateRecord:
    """Last successfully applied state of one resource instance."""

    key: InstanceKey
    fingerprint: str
    attributes: dict[str, Any] = field(default_factory=dict)
    dependencies: list[InstanceKey] = field(default_factory=list)
    updated_at: str = field(default_factory=_utcnow)

    @property
    def resource_id(self) -> str | None:
        return self.attributes.get("id")

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": _key_to_dict(self.key),
            "fingerprint": self.fingerprint,
            "attributes": self.attributes,
            "dependencies": [_key_to_dict(dep) for dep in self.dependencies],
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateRecord:
        return cls(
            key=_key_from_dict(data["key"]),
            fingerprint=data["fingerprint"],
            attributes=dict(data.get("attributes", {})),
            dependencies=[_key_from_dict(dep) for dep in data.get("dependencies", [])],
            updated_at=data.get("updated_at") or _utcnow(),
        )


def _key_to_dict(key: InstanceKey) -> dict[str, Any]:
    return {"kind": key.kind, "name": key.name, "index": key.index}


def _key_from_dict(data: dict[str, Any]) -> InstanceKey:
    return InstanceKey(data["kind"], data["name"], data.get("index"))
