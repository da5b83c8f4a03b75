"""
In-memory resource provider.

Simulates the secret store, IAM and proxy APIs closely enough to drive the
reconciler end to end: provider-assigned ARNs and endpoints, adoption of
existing resources on repeated create, validation errors, and injectable
faults for exercising retry and failure isolation.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
from collections import defaultdict, deque
from typing import Any

import structlog

from proxyplane.core.errors import ProviderPermanentError, ResourceNotFound
from proxyplane.providers.base import ProviderContext, ProviderHealth

logger = structlog.get_logger()

DEFAULT_ACCOUNT_ID = "123456789012"

_REQUIRED_INPUTS: dict[str, tuple[str, ...]] = {
    "secret": ("name",),
    "iam_role": ("name", "assume_role_policy"),
    "iam_role_policy": ("name", "role", "policy"),
    "db_proxy": ("name", "engine_family", "role_arn", "auth", "vpc_subnet_ids"),
    "db_proxy_target": ("db_proxy_name", "db_cluster_identifier"),
    "db_proxy_endpoint": ("db_proxy_name", "name", "vpc_subnet_ids"),
}


def _digest(*parts: str, length: int = 12) -> str:
    return hashlib.sha256(":".join(parts).encode()).hexdigest()[:length]


class InMemoryProvider:
    """Simulated cloud keeping resources in a dict per kind."""

    name = "memory"

    def __init__(
        self,
        *,
        account_id: str = DEFAULT_ACCOUNT_ID,
        latency: float = 0.0,
        **_: Any,
    ) -> None:
        self.account_id = account_id
        self.latency = latency
        self.resources: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self.calls: list[tuple[str, str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._faults: dict[tuple[str, str, str], deque[Exception]] = defaultdict(deque)

    def inject_fault(
        self, operation: str, kind: str, name: str, error: Exception, times: int = 1
    ) -> None:
        """Make the next ``times`` calls of ``operation`` on ``kind``/``name`` raise ``error``."""
        for _ in range(times):
            self._faults[(operation, kind, name)].append(error)

    def calls_for(self, operation: str, kind: str | None = None) -> list[tuple[str, str, str]]:
        return [
            call for call in self.calls if call[0] == operation and (kind is None or call[1] == kind)
        ]

    async def _enter(self, operation: str, kind: str, name: str) -> None:
        self.calls.append((operation, kind, name))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.latency:
                await asyncio.sleep(self.latency)
            faults = self._faults.get((operation, kind, name))
            if faults:
                raise faults.popleft()
        finally:
            self.in_flight -= 1

    def _natural_name(self, kind: str, config: dict[str, Any]) -> str:
        if kind == "iam_role_policy":
            return f"{config.get('role')}:{config.get('name')}"
        if kind == "db_proxy_target":
            group = config.get("target_group_name") or "default"
            return f"{config.get('db_proxy_name')}/{group}/{config.get('db_cluster_identifier')}"
        return str(config.get("name"))

    def _validate(self, kind: str, config: dict[str, Any]) -> None:
        required = _REQUIRED_INPUTS.get(kind)
        if required is None:
            raise ProviderPermanentError(f"Unsupported resource kind: {kind}")
        missing = [attr for attr in required if config.get(attr) in (None, "", [])]
        if missing:
            raise ProviderPermanentError(
                f"ValidationException: {kind} requires {', '.join(missing)}",
                details={"kind": kind},
            )
        if kind == "iam_role_policy" and config["role"] not in self.resources["iam_role"]:
            raise ProviderPermanentError(f"NoSuchEntity: role {config['role']} does not exist")
        if kind in ("db_proxy_target", "db_proxy_endpoint"):
            if config["db_proxy_name"] not in self.resources["db_proxy"]:
                raise ProviderPermanentError(
                    f"DBProxyNotFoundFault: proxy {config['db_proxy_name']} does not exist"
                )

    def _computed(self, kind: str, natural: str, ctx: ProviderContext) -> dict[str, Any]:
        region = ctx.region
        if kind == "secret":
            arn = f"arn:aws:secretsmanager:{region}:{self.account_id}:secret:{natural}-{_digest(kind, natural, length=6)}"
            return {"id": arn, "arn": arn}
        if kind == "iam_role":
            return {
                "id": natural,
                "arn": f"arn:aws:iam::{self.account_id}:role/{natural}",
                "unique_id": f"AROA{_digest(kind, natural, length=16).upper()}",
            }
        if kind == "iam_role_policy":
            return {"id": natural}
        if kind == "db_proxy":
            suffix = _digest(kind, natural)
            return {
                "id": natural,
                "arn": f"arn:aws:rds:{region}:{self.account_id}:db-proxy:prx-{suffix}",
                "endpoint": f"{natural}.proxy-{suffix}.{region}.rds.amazonaws.com",
            }
        if kind == "db_proxy_target":
            proxy_name, group, cluster = natural.split("/", 2)
            return {
                "id": natural,
                "target_group_arn": (
                    f"arn:aws:rds:{region}:{self.account_id}:target-group:prx-tg-"
                    f"{_digest(proxy_name, group)}"
                ),
                "endpoint": f"{cluster}.cluster-{_digest(cluster)}.{region}.rds.amazonaws.com",
            }
        suffix = _digest(kind, natural)
        return {
            "id": natural,
            "arn": f"arn:aws:rds:{region}:{self.account_id}:db-proxy-endpoint:prx-endpoint-{suffix}",
            "endpoint": f"{natural}.endpoint.proxy-{suffix}.{region}.rds.amazonaws.com",
            "is_default": False,
        }

    def _find(self, kind: str, resource_id: str) -> dict[str, Any]:
        resource = self.resources[kind].get(resource_id)
        if resource is None:
            raise ResourceNotFound(f"{kind} {resource_id} does not exist", details={"kind": kind})
        return resource

    async def create(
        self, kind: str, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        natural = self._natural_name(kind, config)
        await self._enter("create", kind, natural)
        self._validate(kind, config)

        existing = self.resources[kind].get(natural)
        if existing is not None:
            logger.debug("memory_provider_adopted", kind=kind, name=natural)
            return copy.deepcopy(existing)

        attributes = {**copy.deepcopy(config), **self._computed(kind, natural, ctx)}
        if "tags" in attributes or ctx.tags:
            attributes["tags"] = {**ctx.tags, **(config.get("tags") or {})}
        if kind == "secret":
            attributes["name"] = config["name"]
        self.resources[kind][natural] = attributes
        return copy.deepcopy(attributes)

    async def read(self, kind: str, resource_id: str, ctx: ProviderContext) -> dict[str, Any]:
        natural = self._natural_from_id(kind, resource_id)
        await self._enter("read", kind, natural)
        return copy.deepcopy(self._find(kind, natural))

    async def update(
        self, kind: str, resource_id: str, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        natural = self._natural_from_id(kind, resource_id)
        await self._enter("update", kind, natural)
        current = self._find(kind, natural)
        self._validate(kind, config)
        computed = {key: current[key] for key in self._computed(kind, natural, ctx)}
        attributes = {**copy.deepcopy(config), **computed}
        if "tags" in attributes or ctx.tags:
            attributes["tags"] = {**ctx.tags, **(config.get("tags") or {})}
        self.resources[kind][natural] = attributes
        return copy.deepcopy(attributes)

    async def delete(self, kind: str, resource_id: str, ctx: ProviderContext) -> None:
        natural = self._natural_from_id(kind, resource_id)
        await self._enter("delete", kind, natural)
        self._find(kind, natural)
        del self.resources[kind][natural]

    async def health_check(self, ctx: ProviderContext) -> ProviderHealth:
        return ProviderHealth(status="healthy", details=f"{sum(map(len, self.resources.values()))} resources")

    def _natural_from_id(self, kind: str, resource_id: str) -> str:
        if kind != "secret":
            return resource_id
        for natural, attributes in self.resources[kind].items():
            if attributes["id"] == resource_id:
                return natural
        return resource_id
