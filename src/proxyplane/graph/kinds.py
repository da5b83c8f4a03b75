from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ResourceKind:
    """Schema metadata describing a provider-managed resource kind."""

    name: str
    description: str
    inputs: frozenset[str]
    outputs: frozenset[str]

    def has_attribute(self, attribute: str) -> bool:
        return attribute in self.inputs or attribute in self.outputs


def _kind(name: str, description: str, inputs: list[str], outputs: list[str]) -> ResourceKind:
    # every kind exposes the provider-assigned id
    return ResourceKind(name, description, frozenset(inputs), frozenset(outputs) | {"id"})


SECRET = _kind(
    "secret",
    "Per-user database credential secret",
    ["name", "description", "kms_key_id", "tags"],
    ["arn", "name"],
)

IAM_ROLE = _kind(
    "iam_role",
    "Execution role assumed by the database proxy",
    ["name", "description", "assume_role_policy", "inline_policy", "tags"],
    ["arn", "name", "unique_id"],
)

IAM_ROLE_POLICY = _kind(
    "iam_role_policy",
    "Inline policy attached to a role",
    ["name", "role", "policy"],
    ["name"],
)

DB_PROXY = _kind(
    "db_proxy",
    "Connection-pooling proxy in front of a database cluster",
    [
        "name",
        "engine_family",
        "role_arn",
        "auth",
        "vpc_subnet_ids",
        "vpc_security_group_ids",
        "require_tls",
        "idle_client_timeout",
        "debug_logging",
        "tags",
    ],
    ["arn", "name", "endpoint"],
)

DB_PROXY_TARGET = _kind(
    "db_proxy_target",
    "Registration of a database cluster behind a proxy target group",
    ["db_proxy_name", "target_group_name", "db_cluster_identifier", "connection_pool_config"],
    ["target_group_arn", "endpoint"],
)

DB_PROXY_ENDPOINT = _kind(
    "db_proxy_endpoint",
    "Additional proxy endpoint, typically read-only",
    ["db_proxy_name", "name", "vpc_subnet_ids", "vpc_security_group_ids", "target_role", "tags"],
    ["arn", "endpoint", "is_default"],
)

BUILTIN_KINDS: dict[str, ResourceKind] = {
    kind.name: kind
    for kind in (SECRET, IAM_ROLE, IAM_ROLE_POLICY, DB_PROXY, DB_PROXY_TARGET, DB_PROXY_ENDPOINT)
}
