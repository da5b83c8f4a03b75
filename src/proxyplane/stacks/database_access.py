"""
Secure database access stack.

Builds the declaration document for the path from per-user credential
secrets, through an execution role allowed to read exactly those secrets,
to a connection-pooling proxy in front of a database cluster with a
read-write and a read-only endpoint.

Initial credential material is not generated here: secrets are created
empty and populated by a rotation or bootstrap process.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from proxyplane.core.errors import DeclarationError

RDS_SERVICE_PRINCIPAL = "rds.amazonaws.com"
ENGINE_FAMILIES = ("MYSQL", "POSTGRESQL", "SQLSERVER")


@dataclass
class DatabaseAccessConfig:
    """Parameters of the database access stack."""

    name: str
    cluster_identifier: str
    users: dict[str, str]
    vpc_subnet_ids: list[str]
    vpc_security_group_ids: list[str] = field(default_factory=list)
    engine_family: str = "POSTGRESQL"
    secret_prefix: str | None = None
    kms_key_id: str | None = None
    require_tls: bool = True
    idle_client_timeout: int = 1800
    connection_pool_config: dict[str, Any] = field(default_factory=dict)
    read_only_endpoint: bool = True
    tags: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DatabaseAccessConfig:
        if not isinstance(data, dict):
            raise DeclarationError("Stack parameters must be a mapping")
        missing = [key for key in ("name", "cluster_identifier", "users", "vpc_subnet_ids") if not data.get(key)]
        if missing:
            raise DeclarationError(
                f"database_access stack requires: {', '.join(missing)}",
                details={"stack": "database_access"},
            )
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise DeclarationError(
                f"Unknown database_access parameters: {', '.join(sorted(unknown))}"
            )

        users = data["users"]
        # A plain list means the secret is named after the user
        if isinstance(users, list):
            users = {str(user): str(user) for user in users}
        if not isinstance(users, dict):
            raise DeclarationError("users must map user names to secret names")

        config = cls(**{**data, "users": {str(k): str(v) for k, v in users.items()}})
        if config.engine_family not in ENGINE_FAMILIES:
            raise DeclarationError(
                f"engine_family must be one of {', '.join(ENGINE_FAMILIES)}, "
                f"got {config.engine_family!r}"
            )
        return config

    @property
    def prefix(self) -> str:
        return self.secret_prefix or self.name


def _assume_role_policy() -> dict[str, Any]:
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Service": RDS_SERVICE_PRINCIPAL},
                "Action": "sts:AssumeRole",
            }
        ],
    }


def _secrets_policy() -> dict[str, Any]:
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "ReadProxyUserSecrets",
                "Effect": "Allow",
                "Action": ["secretsmanager:GetSecretValue", "secretsmanager:DescribeSecret"],
                "Resource": {"$all": "secret.user.arn"},
            }
        ],
    }


def _kms_policy(config: DatabaseAccessConfig) -> dict[str, Any]:
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "DecryptProxyUserSecrets",
                "Effect": "Allow",
                "Action": "kms:Decrypt",
                "Resource": config.kms_key_id,
                "Condition": {
                    "StringEquals": {"kms:ViaService": "secretsmanager.*.amazonaws.com"}
                },
            }
        ],
    }


def build_database_access(config: DatabaseAccessConfig | dict[str, Any]) -> dict[str, Any]:
    """Return the declaration document for one proxy and its users."""
    if isinstance(config, dict):
        config = DatabaseAccessConfig.from_dict(config)

    secret_config: dict[str, Any] = {
        "name": {"$format": "{0}/{1}", "args": [config.prefix, {"$each": "value"}]},
        "description": {"$format": "Proxy credentials for {0}", "args": [{"$each": "key"}]},
        "tags": {**config.tags, "proxyplane:user": {"$each": "key"}},
    }
    if config.kms_key_id:
        secret_config["kms_key_id"] = config.kms_key_id

    resources: dict[str, Any] = {
        "secret": {
            "user": {"for_each": dict(config.users), "config": secret_config},
        },
        "iam_role": {
            "proxy": {
                "config": {
                    "name": f"{config.name}-proxy",
                    "description": f"Allows the {config.name} proxy to read its user secrets",
                    "assume_role_policy": _assume_role_policy(),
                    "inline_policy": _secrets_policy(),
                    "tags": dict(config.tags),
                }
            }
        },
    }

    proxy_depends_on: list[str] = []
    if config.kms_key_id:
        resources["iam_role_policy"] = {
            "kms_decrypt": {
                "config": {
                    "name": "kms-decrypt",
                    "role": {"$ref": "iam_role.proxy.name"},
                    "policy": _kms_policy(config),
                }
            }
        }
        proxy_depends_on.append("iam_role_policy.kms_decrypt")

    auth = [
        {
            "description": f"Credentials for {user}",
            "auth_scheme": "SECRETS",
            "iam_auth": "DISABLED",
            "secret_arn": {"$ref": f'secret.user["{user}"].arn'},
        }
        for user in config.users
    ]

    proxy: dict[str, Any] = {
        "config": {
            "name": config.name,
            "engine_family": config.engine_family,
            "role_arn": {"$ref": "iam_role.proxy.arn"},
            "auth": auth,
            "vpc_subnet_ids": list(config.vpc_subnet_ids),
            "vpc_security_group_ids": list(config.vpc_security_group_ids),
            "require_tls": config.require_tls,
            "idle_client_timeout": config.idle_client_timeout,
            "tags": dict(config.tags),
        }
    }
    if proxy_depends_on:
        proxy["depends_on"] = proxy_depends_on
    resources["db_proxy"] = {"main": proxy}

    target_config: dict[str, Any] = {
        "db_proxy_name": {"$ref": "db_proxy.main.name"},
        "target_group_name": "default",
        "db_cluster_identifier": config.cluster_identifier,
    }
    if config.connection_pool_config:
        target_config["connection_pool_config"] = dict(config.connection_pool_config)
    resources["db_proxy_target"] = {"cluster": {"config": target_config}}

    outputs: dict[str, Any] = {
        "proxy_arn": {"value": {"$ref": "db_proxy.main.arn"}, "description": "Proxy ARN"},
        "proxy_endpoint": {
            "value": {"$ref": "db_proxy.main.endpoint"},
            "description": "Read-write proxy endpoint",
        },
        "role_arn": {"value": {"$ref": "iam_role.proxy.arn"}, "description": "Proxy execution role"},
        "secret_arns": {
            "value": {"$all": "secret.user.arn"},
            "description": "User credential secret ARNs, in declaration order",
        },
    }

    if config.read_only_endpoint:
        resources["db_proxy_endpoint"] = {
            "read_only": {
                "depends_on": ["db_proxy_target.cluster"],
                "config": {
                    "db_proxy_name": {"$ref": "db_proxy.main.name"},
                    "name": f"{config.name}-read-only",
                    "vpc_subnet_ids": list(config.vpc_subnet_ids),
                    "vpc_security_group_ids": list(config.vpc_security_group_ids),
                    "target_role": "READ_ONLY",
                    "tags": dict(config.tags),
                },
            }
        }
        outputs["proxy_read_only_endpoint"] = {
            "value": {"$ref": "db_proxy_endpoint.read_only.endpoint"},
            "description": "Read-only proxy endpoint",
        }

    return {"resources": resources, "outputs": outputs}
