"""
AWS resource provider.

Maps resource kinds onto Secrets Manager, IAM and RDS proxy API calls via
aioboto3. Botocore errors are classified into transient (retried by the
executor) and permanent failures.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import aioboto3
import structlog
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from proxyplane.core.errors import (
    ProviderError,
    ProviderPermanentError,
    ProviderTransientError,
    ResourceNotFound,
)
from proxyplane.providers.base import ProviderContext, ProviderHealth

logger = structlog.get_logger()

TRANSIENT_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "InternalFailure",
        "InternalServiceError",
        "InternalServiceErrorException",
        "ConcurrentModification",
        "ConcurrentModificationException",
        "InvalidDBProxyStateFault",
    }
)

NOT_FOUND_ERROR_CODES = frozenset(
    {
        "ResourceNotFoundException",
        "NoSuchEntity",
        "DBProxyNotFoundFault",
        "DBProxyEndpointNotFoundFault",
        "DBProxyTargetNotFoundFault",
        "DBProxyTargetGroupNotFoundFault",
    }
)

INLINE_POLICY_NAME = "proxyplane-inline"
SECRET_RECOVERY_WINDOW_DAYS = 7
PROXY_POLL_INTERVAL = 10.0
PROXY_POLL_ATTEMPTS = 90


def classify_client_error(exc: Exception, operation: str | None = None) -> ProviderError:
    """Translate a botocore exception into the provider error taxonomy.

    Not-found errors raised while creating or updating come from reads of
    resources that are not yet visible, so they are transient for those
    operations.
    """
    if isinstance(exc, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)):
        return ProviderTransientError(f"Network error: {exc}")
    if not isinstance(exc, ClientError):
        return ProviderPermanentError(str(exc))

    error = exc.response.get("Error", {})
    code = error.get("Code", "Unknown")
    message = error.get("Message", str(exc))
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
    details = {"code": code, "status": status}

    if code in NOT_FOUND_ERROR_CODES:
        if operation in ("create", "update"):
            return ProviderTransientError(f"{code}: {message}", details=details)
        return ResourceNotFound(f"{code}: {message}", details=details)
    if code in TRANSIENT_ERROR_CODES or status in (429, 500, 502, 503, 504):
        return ProviderTransientError(f"{code}: {message}", details=details)
    # A role that was just created is not yet assumable by the proxy service
    if code == "InvalidParameterValue" and "role" in message.lower():
        return ProviderTransientError(f"{code}: {message}", details=details)
    return ProviderPermanentError(f"{code}: {message}", details=details)


def _tags(ctx: ProviderContext, config: dict[str, Any]) -> list[dict[str, str]]:
    merged = {**ctx.tags, **(config.get("tags") or {})}
    return [{"Key": key, "Value": value} for key, value in merged.items()]


def _json(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value, sort_keys=True)


def _proxy_auth(auth: list[dict[str, Any]]) -> list[dict[str, Any]]:
    entries = []
    for item in auth:
        entry = {
            "AuthScheme": item.get("auth_scheme", "SECRETS"),
            "SecretArn": item["secret_arn"],
            "IAMAuth": item.get("iam_auth", "DISABLED"),
        }
        if item.get("description"):
            entry["Description"] = item["description"]
        if item.get("client_password_auth_type"):
            entry["ClientPasswordAuthType"] = item["client_password_auth_type"]
        entries.append(entry)
    return entries


_POOL_CONFIG_FIELDS = {
    "max_connections_percent": "MaxConnectionsPercent",
    "max_idle_connections_percent": "MaxIdleConnectionsPercent",
    "connection_borrow_timeout": "ConnectionBorrowTimeout",
    "session_pinning_filters": "SessionPinningFilters",
    "init_query": "InitQuery",
}


def _pool_config(config: dict[str, Any]) -> dict[str, Any]:
    unknown = set(config) - set(_POOL_CONFIG_FIELDS)
    if unknown:
        raise ProviderPermanentError(
            f"Unknown connection_pool_config fields: {', '.join(sorted(unknown))}"
        )
    return {_POOL_CONFIG_FIELDS[key]: value for key, value in config.items()}


class AwsProvider:
    """Resource provider backed by the AWS APIs."""

    name = "aws"

    def __init__(self, *, session: aioboto3.Session | None = None, **_: Any) -> None:
        self._session = session

    def _client(self, service: str, ctx: ProviderContext):
        session = self._session or aioboto3.Session(
            region_name=ctx.region, profile_name=ctx.profile
        )
        return session.client(service, region_name=ctx.region)

    async def _call(self, operation: str, kind: str, coro_factory) -> dict[str, Any]:
        try:
            return await coro_factory()
        except (ClientError, EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError) as exc:
            error = classify_client_error(exc, operation)
            logger.warning(
                "aws_call_failed",
                operation=operation,
                kind=kind,
                error_type=type(error).__name__,
                error=error.message,
            )
            raise error from exc

    async def create(
        self, kind: str, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        handler = getattr(self, f"_create_{kind}", None)
        if handler is None:
            raise ProviderPermanentError(f"Unsupported resource kind: {kind}")
        return await self._call("create", kind, lambda: handler(config, ctx))

    async def read(self, kind: str, resource_id: str, ctx: ProviderContext) -> dict[str, Any]:
        handler = getattr(self, f"_read_{kind}", None)
        if handler is None:
            raise ProviderPermanentError(f"Unsupported resource kind: {kind}")
        return await self._call("read", kind, lambda: handler(resource_id, ctx))

    async def update(
        self, kind: str, resource_id: str, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        handler = getattr(self, f"_update_{kind}", None)
        if handler is None:
            raise ProviderPermanentError(f"Unsupported resource kind: {kind}")
        return await self._call("update", kind, lambda: handler(resource_id, config, ctx))

    async def delete(self, kind: str, resource_id: str, ctx: ProviderContext) -> None:
        handler = getattr(self, f"_delete_{kind}", None)
        if handler is None:
            raise ProviderPermanentError(f"Unsupported resource kind: {kind}")
        await self._call("delete", kind, lambda: handler(resource_id, ctx))

    async def health_check(self, ctx: ProviderContext) -> ProviderHealth:
        try:
            async with self._client("sts", ctx) as client:
                identity = await client.get_caller_identity()
        except (ClientError, EndpointConnectionError) as exc:
            return ProviderHealth(status="unreachable", details=str(exc))
        return ProviderHealth(status="healthy", details=identity.get("Arn"))

    # === Secrets Manager ===

    async def _create_secret(self, config: dict[str, Any], ctx: ProviderContext) -> dict[str, Any]:
        params: dict[str, Any] = {"Name": config["name"], "Tags": _tags(ctx, config)}
        if config.get("description"):
            params["Description"] = config["description"]
        if config.get("kms_key_id"):
            params["KmsKeyId"] = config["kms_key_id"]
        async with self._client("secretsmanager", ctx) as client:
            try:
                await client.create_secret(**params)
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") != "ResourceExistsException":
                    raise
                logger.info("aws_secret_adopted", name=config["name"])
        return await self._read_secret(config["name"], ctx)

    async def _read_secret(self, resource_id: str, ctx: ProviderContext) -> dict[str, Any]:
        async with self._client("secretsmanager", ctx) as client:
            response = await client.describe_secret(SecretId=resource_id)
        return {
            "id": response["ARN"],
            "arn": response["ARN"],
            "name": response["Name"],
            "description": response.get("Description"),
            "kms_key_id": response.get("KmsKeyId"),
            "tags": {tag["Key"]: tag["Value"] for tag in response.get("Tags", [])},
        }

    async def _update_secret(
        self, resource_id: str, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"SecretId": resource_id}
        if config.get("description") is not None:
            params["Description"] = config["description"]
        if config.get("kms_key_id"):
            params["KmsKeyId"] = config["kms_key_id"]
        async with self._client("secretsmanager", ctx) as client:
            await client.update_secret(**params)
            tags = _tags(ctx, config)
            if tags:
                await client.tag_resource(SecretId=resource_id, Tags=tags)
        return await self._read_secret(resource_id, ctx)

    async def _delete_secret(self, resource_id: str, ctx: ProviderContext) -> None:
        async with self._client("secretsmanager", ctx) as client:
            await client.delete_secret(SecretId=resource_id, RecoveryWindowInDays=SECRET_RECOVERY_WINDOW_DAYS)

    # === IAM ===

    async def _put_inline_policy(self, client: Any, role: str, config: dict[str, Any]) -> None:
        if config.get("inline_policy"):
            await client.put_role_policy(
                RoleName=role,
                PolicyName=INLINE_POLICY_NAME,
                PolicyDocument=_json(config["inline_policy"]),
            )

    async def _create_iam_role(self, config: dict[str, Any], ctx: ProviderContext) -> dict[str, Any]:
        params: dict[str, Any] = {
            "RoleName": config["name"],
            "AssumeRolePolicyDocument": _json(config["assume_role_policy"]),
            "Tags": _tags(ctx, config),
        }
        if config.get("description"):
            params["Description"] = config["description"]
        async with self._client("iam", ctx) as client:
            try:
                await client.create_role(**params)
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") != "EntityAlreadyExists":
                    raise
                logger.info("aws_role_adopted", name=config["name"])
            await self._put_inline_policy(client, config["name"], config)
        return {**config, **await self._read_iam_role(config["name"], ctx)}

    async def _read_iam_role(self, resource_id: str, ctx: ProviderContext) -> dict[str, Any]:
        async with self._client("iam", ctx) as client:
            role = (await client.get_role(RoleName=resource_id))["Role"]
        return {
            "id": role["RoleName"],
            "name": role["RoleName"],
            "arn": role["Arn"],
            "unique_id": role["RoleId"],
            "description": role.get("Description"),
            "assume_role_policy": role.get("AssumeRolePolicyDocument"),
        }

    async def _update_iam_role(
        self, resource_id: str, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        async with self._client("iam", ctx) as client:
            await client.update_assume_role_policy(
                RoleName=resource_id, PolicyDocument=_json(config["assume_role_policy"])
            )
            if config.get("description") is not None:
                await client.update_role(RoleName=resource_id, Description=config["description"])
            if config.get("inline_policy"):
                await self._put_inline_policy(client, resource_id, config)
            else:
                try:
                    await client.delete_role_policy(
                        RoleName=resource_id, PolicyName=INLINE_POLICY_NAME
                    )
                except ClientError as exc:
                    if exc.response.get("Error", {}).get("Code") != "NoSuchEntity":
                        raise
        return {**config, **await self._read_iam_role(resource_id, ctx)}

    async def _delete_iam_role(self, resource_id: str, ctx: ProviderContext) -> None:
        async with self._client("iam", ctx) as client:
            policies = await client.list_role_policies(RoleName=resource_id)
            for policy_name in policies.get("PolicyNames", []):
                await client.delete_role_policy(RoleName=resource_id, PolicyName=policy_name)
            await client.delete_role(RoleName=resource_id)

    async def _create_iam_role_policy(
        self, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        # put_role_policy is an upsert
        async with self._client("iam", ctx) as client:
            await client.put_role_policy(
                RoleName=config["role"],
                PolicyName=config["name"],
                PolicyDocument=_json(config["policy"]),
            )
        return {**config, "id": f"{config['role']}:{config['name']}"}

    async def _read_iam_role_policy(self, resource_id: str, ctx: ProviderContext) -> dict[str, Any]:
        role, name = resource_id.split(":", 1)
        async with self._client("iam", ctx) as client:
            response = await client.get_role_policy(RoleName=role, PolicyName=name)
        return {
            "id": resource_id,
            "role": role,
            "name": name,
            "policy": response["PolicyDocument"],
        }

    async def _update_iam_role_policy(
        self, resource_id: str, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        return await self._create_iam_role_policy(config, ctx)

    async def _delete_iam_role_policy(self, resource_id: str, ctx: ProviderContext) -> None:
        role, name = resource_id.split(":", 1)
        async with self._client("iam", ctx) as client:
            await client.delete_role_policy(RoleName=role, PolicyName=name)

    # === RDS proxy ===

    async def _create_db_proxy(self, config: dict[str, Any], ctx: ProviderContext) -> dict[str, Any]:
        params: dict[str, Any] = {
            "DBProxyName": config["name"],
            "EngineFamily": config["engine_family"],
            "Auth": _proxy_auth(config["auth"]),
            "RoleArn": config["role_arn"],
            "VpcSubnetIds": list(config["vpc_subnet_ids"]),
            "RequireTLS": bool(config.get("require_tls", True)),
            "DebugLogging": bool(config.get("debug_logging", False)),
            "Tags": _tags(ctx, config),
        }
        if config.get("vpc_security_group_ids"):
            params["VpcSecurityGroupIds"] = list(config["vpc_security_group_ids"])
        if config.get("idle_client_timeout") is not None:
            params["IdleClientTimeout"] = int(config["idle_client_timeout"])
        async with self._client("rds", ctx) as client:
            try:
                await client.create_db_proxy(**params)
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") != "DBProxyAlreadyExistsFault":
                    raise
                logger.info("aws_proxy_adopted", name=config["name"])
        return await self._wait_for_proxy(config["name"], ctx)

    async def _wait_for_proxy(self, name: str, ctx: ProviderContext) -> dict[str, Any]:
        for _ in range(PROXY_POLL_ATTEMPTS):
            attributes = await self._read_db_proxy(name, ctx)
            if attributes["status"] == "available":
                return attributes
            if attributes["status"] in ("incompatible-network", "insufficient-resource-limits"):
                raise ProviderPermanentError(f"Proxy {name} entered status {attributes['status']}")
            await asyncio.sleep(PROXY_POLL_INTERVAL)
        raise ProviderTransientError(f"Proxy {name} did not become available")

    async def _read_db_proxy(self, resource_id: str, ctx: ProviderContext) -> dict[str, Any]:
        async with self._client("rds", ctx) as client:
            response = await client.describe_db_proxies(DBProxyName=resource_id)
        proxy = response["DBProxies"][0]
        return {
            "id": proxy["DBProxyName"],
            "name": proxy["DBProxyName"],
            "arn": proxy["DBProxyArn"],
            "endpoint": proxy.get("Endpoint"),
            "status": proxy.get("Status"),
            "engine_family": proxy.get("EngineFamily"),
            "role_arn": proxy.get("RoleArn"),
            "require_tls": proxy.get("RequireTLS"),
            "idle_client_timeout": proxy.get("IdleClientTimeout"),
            "debug_logging": proxy.get("DebugLogging"),
            "vpc_subnet_ids": proxy.get("VpcSubnetIds", []),
            "vpc_security_group_ids": proxy.get("VpcSecurityGroupIds", []),
        }

    async def _update_db_proxy(
        self, resource_id: str, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "DBProxyName": resource_id,
            "Auth": _proxy_auth(config["auth"]),
            "RoleArn": config["role_arn"],
            "RequireTLS": bool(config.get("require_tls", True)),
            "DebugLogging": bool(config.get("debug_logging", False)),
        }
        if config.get("vpc_security_group_ids"):
            params["SecurityGroups"] = list(config["vpc_security_group_ids"])
        if config.get("idle_client_timeout") is not None:
            params["IdleClientTimeout"] = int(config["idle_client_timeout"])
        async with self._client("rds", ctx) as client:
            await client.modify_db_proxy(**params)
        return await self._wait_for_proxy(resource_id, ctx)

    async def _delete_db_proxy(self, resource_id: str, ctx: ProviderContext) -> None:
        async with self._client("rds", ctx) as client:
            await client.delete_db_proxy(DBProxyName=resource_id)

    async def _create_db_proxy_target(
        self, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        group = config.get("target_group_name") or "default"
        async with self._client("rds", ctx) as client:
            if config.get("connection_pool_config"):
                await client.modify_db_proxy_target_group(
                    DBProxyName=config["db_proxy_name"],
                    TargetGroupName=group,
                    ConnectionPoolConfig=_pool_config(config["connection_pool_config"]),
                )
            try:
                await client.register_db_proxy_targets(
                    DBProxyName=config["db_proxy_name"],
                    TargetGroupName=group,
                    DBClusterIdentifiers=[config["db_cluster_identifier"]],
                )
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") != "DBProxyTargetAlreadyRegisteredFault":
                    raise
        resource_id = f"{config['db_proxy_name']}/{group}/{config['db_cluster_identifier']}"
        return {**config, **await self._read_db_proxy_target(resource_id, ctx)}

    async def _read_db_proxy_target(self, resource_id: str, ctx: ProviderContext) -> dict[str, Any]:
        proxy_name, group, cluster = resource_id.split("/", 2)
        async with self._client("rds", ctx) as client:
            response = await client.describe_db_proxy_targets(
                DBProxyName=proxy_name, TargetGroupName=group
            )
        for target in response.get("Targets", []):
            if target.get("RdsResourceId") == cluster or target.get("TrackedClusterId") == cluster:
                return {
                    "id": resource_id,
                    "db_proxy_name": proxy_name,
                    "target_group_name": group,
                    "db_cluster_identifier": cluster,
                    "target_group_arn": target.get("TargetArn"),
                    "endpoint": target.get("Endpoint"),
                }
        raise ResourceNotFound(f"Target {cluster} is not registered with {proxy_name}/{group}")

    async def _update_db_proxy_target(
        self, resource_id: str, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        proxy_name, group, _ = resource_id.split("/", 2)
        async with self._client("rds", ctx) as client:
            await client.modify_db_proxy_target_group(
                DBProxyName=proxy_name,
                TargetGroupName=group,
                ConnectionPoolConfig=_pool_config(config.get("connection_pool_config") or {}),
            )
        return {**config, **await self._read_db_proxy_target(resource_id, ctx)}

    async def _delete_db_proxy_target(self, resource_id: str, ctx: ProviderContext) -> None:
        proxy_name, group, cluster = resource_id.split("/", 2)
        async with self._client("rds", ctx) as client:
            await client.deregister_db_proxy_targets(
                DBProxyName=proxy_name, TargetGroupName=group, DBClusterIdentifiers=[cluster]
            )

    async def _create_db_proxy_endpoint(
        self, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "DBProxyName": config["db_proxy_name"],
            "DBProxyEndpointName": config["name"],
            "VpcSubnetIds": list(config["vpc_subnet_ids"]),
            "TargetRole": config.get("target_role", "READ_ONLY"),
            "Tags": _tags(ctx, config),
        }
        if config.get("vpc_security_group_ids"):
            params["VpcSecurityGroupIds"] = list(config["vpc_security_group_ids"])
        async with self._client("rds", ctx) as client:
            try:
                await client.create_db_proxy_endpoint(**params)
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") != "DBProxyEndpointAlreadyExistsFault":
                    raise
        return await self._read_db_proxy_endpoint(config["name"], ctx)

    async def _read_db_proxy_endpoint(self, resource_id: str, ctx: ProviderContext) -> dict[str, Any]:
        async with self._client("rds", ctx) as client:
            response = await client.describe_db_proxy_endpoints(DBProxyEndpointName=resource_id)
        endpoint = response["DBProxyEndpoints"][0]
        return {
            "id": endpoint["DBProxyEndpointName"],
            "name": endpoint["DBProxyEndpointName"],
            "db_proxy_name": endpoint["DBProxyName"],
            "arn": endpoint["DBProxyEndpointArn"],
            "endpoint": endpoint.get("Endpoint"),
            "target_role": endpoint.get("TargetRole"),
            "is_default": endpoint.get("IsDefault", False),
            "vpc_subnet_ids": endpoint.get("VpcSubnetIds", []),
            "vpc_security_group_ids": endpoint.get("VpcSecurityGroupIds", []),
        }

    async def _update_db_proxy_endpoint(
        self, resource_id: str, config: dict[str, Any], ctx: ProviderContext
    ) -> dict[str, Any]:
        async with self._client("rds", ctx) as client:
            await client.modify_db_proxy_endpoint(
                DBProxyEndpointName=resource_id,
                VpcSecurityGroupIds=list(config.get("vpc_security_group_ids") or []),
            )
        return await self._read_db_proxy_endpoint(resource_id, ctx)

    async def _delete_db_proxy_endpoint(self, resource_id: str, ctx: ProviderContext) -> None:
        async with self._client("rds", ctx) as client:
            await client.delete_db_proxy_endpoint(DBProxyEndpointName=resource_id)
