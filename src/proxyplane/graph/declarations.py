"""Declaration documents and the for-each expansion pre-pass."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from proxyplane.core.errors import DeclarationError
from proxyplane.graph.expressions import (
    Expression,
    InstanceKey,
    MapExpr,
    contains_each,
    parse_expression,
    substitute_each,
)


@dataclass
class ResourceDeclaration:
    """One resource block as written in a declaration document."""

    kind: str
    name: str
    config: MapExpr
    for_each: dict[str, Any] | None = None
    depends_on: list[InstanceKey] = field(default_factory=list)

    @property
    def address(self) -> str:
        return f"{self.kind}.{self.name}"


@dataclass
class OutputDeclaration:
    name: str
    expression: Expression
    description: str | None = None


@dataclass
class ResourceInstance:
    """One expanded unit of a declaration, owned by the current run."""

    key: InstanceKey
    config: MapExpr
    depends_on: list[InstanceKey] = field(default_factory=list)
    position: int = 0


@dataclass
class DeclarationSet:
    resources: list[ResourceDeclaration] = field(default_factory=list)
    outputs: list[OutputDeclaration] = field(default_factory=list)

    @classmethod
    def from_dict(cls, document: dict[str, Any] | None) -> DeclarationSet:
        """Parse a declaration document (resources + outputs maps)."""
        document = document or {}
        if not isinstance(document, dict):
            raise DeclarationError("Declaration document must be a mapping")

        unknown = set(document) - {"resources", "outputs"}
        if unknown:
            raise DeclarationError(f"Unknown top-level sections: {', '.join(sorted(unknown))}")

        declarations = cls()
        for kind, blocks in (document.get("resources") or {}).items():
            if not isinstance(blocks, dict):
                raise DeclarationError(f"resources.{kind} must map logical names to blocks")
            for name, block in blocks.items():
                declarations.resources.append(_parse_resource(str(kind), str(name), block))

        for name, raw in (document.get("outputs") or {}).items():
            description = None
            if isinstance(raw, dict) and "value" in raw and not any(
                str(k).startswith("$") for k in raw
            ):
                description = raw.get("description")
                raw = raw["value"]
            expression = parse_expression(raw)
            if contains_each(expression):
                raise DeclarationError(f"Output {name!r} cannot use $each")
            declarations.outputs.append(OutputDeclaration(str(name), expression, description))

        return declarations


def _parse_resource(kind: str, name: str, block: Any) -> ResourceDeclaration:
    address = f"{kind}.{name}"
    if block is None:
        block = {}
    if not isinstance(block, dict):
        raise DeclarationError(f"{address} must be a mapping")

    unknown = set(block) - {"config", "for_each", "depends_on"}
    if unknown:
        raise DeclarationError(f"{address} has unknown fields: {', '.join(sorted(unknown))}")

    config = parse_expression(block.get("config") or {})
    if not isinstance(config, MapExpr):
        raise DeclarationError(f"{address}.config must be a mapping")

    for_each = block.get("for_each")
    if for_each is not None and not isinstance(for_each, dict):
        raise DeclarationError(f"{address}.for_each must be a mapping")
    if for_each is None and contains_each(config):
        raise DeclarationError(f"{address} uses $each without for_each")

    depends_on = [InstanceKey.parse(str(item)) for item in block.get("depends_on") or []]

    return ResourceDeclaration(
        kind=kind,
        name=name,
        config=config,
        for_each={str(k): v for k, v in for_each.items()} if for_each is not None else None,
        depends_on=depends_on,
    )


def expand(declarations: DeclarationSet) -> list[ResourceInstance]:
    """Produce one instance per declaration, or one per for_each entry."""
    instances: list[ResourceInstance] = []
    seen: set[InstanceKey] = set()

    for declaration in declarations.resources:
        if declaration.for_each is None:
            entries: list[tuple[InstanceKey, MapExpr]] = [
                (InstanceKey(declaration.kind, declaration.name), declaration.config)
            ]
        else:
            entries = []
            for index, value in declaration.for_each.items():
                config = MapExpr(
                    tuple(
                        (name, substitute_each(expr, index, value))
                        for name, expr in declaration.config.items
                    )
                )
                entries.append((InstanceKey(declaration.kind, declaration.name, index), config))

        for key, config in entries:
            if key in seen:
                raise DeclarationError(f"Duplicate resource instance: {key}")
            seen.add(key)
            instances.append(
                ResourceInstance(
                    key=key,
                    config=config,
                    depends_on=list(declaration.depends_on),
                    position=len(instances),
                )
            )

    return instances
