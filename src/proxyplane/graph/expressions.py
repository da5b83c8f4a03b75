"""
Typed expression tree for declaration attribute values.

Declaration documents encode references as small marker maps::

    {"$ref": "iam_role.proxy.arn"}
    {"$ref": "secret.user[alice].arn"}
    {"$all": "secret.user.arn"}
    {"$each": "value.username"}
    {"$format": "{0}-readonly", "args": [{"$ref": "db_proxy.main.id"}]}

Everything else is a literal. Dependencies are extracted by walking the
tree, never by matching strings in rendered values.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Union

from proxyplane.core.errors import DeclarationError

UNKNOWN = "(known after apply)"

_ADDRESS_RE = re.compile(
    r"^(?P<kind>[A-Za-z_][\w-]*)\.(?P<name>[A-Za-z_][\w-]*)"
    r"(?:\[(?P<quote>\"?)(?P<index>[^\]\"]+)(?P=quote)\])?"
    r"(?:\.(?P<attribute>[A-Za-z_]\w*))?$"
)


@dataclass(frozen=True)
class InstanceKey:
    """Stable identity of a resource instance within a run."""

    kind: str
    name: str
    index: str | None = None

    def __str__(self) -> str:
        if self.index is None:
            return f"{self.kind}.{self.name}"
        return f'{self.kind}.{self.name}["{self.index}"]'

    @property
    def address(self) -> tuple[str, str]:
        """Declaration address shared by all members of a for-each expansion."""
        return (self.kind, self.name)

    @classmethod
    def parse(cls, text: str) -> InstanceKey:
        match = _ADDRESS_RE.match(text.strip())
        if not match or match.group("attribute"):
            raise DeclarationError(f"Invalid instance address: {text!r}")
        return cls(match.group("kind"), match.group("name"), match.group("index"))


@dataclass(frozen=True)
class Literal:
    value: Any


@dataclass(frozen=True)
class Reference:
    """Pointer to one output attribute of another instance."""

    kind: str
    name: str
    attribute: str
    index: str | None = None

    @property
    def target(self) -> InstanceKey:
        return InstanceKey(self.kind, self.name, self.index)

    def __str__(self) -> str:
        return f"{self.target}.{self.attribute}"


@dataclass(frozen=True)
class CollectionReference:
    """Pointer to one attribute of every member of a declaration."""

    kind: str
    name: str
    attribute: str

    def __str__(self) -> str:
        return f"{self.kind}.{self.name}[*].{self.attribute}"


@dataclass(frozen=True)
class EachKey:
    pass


@dataclass(frozen=True)
class EachValue:
    path: tuple[str, ...] = ()


@dataclass(frozen=True)
class Format:
    template: str
    args: tuple[Expression, ...]


@dataclass(frozen=True)
class ListExpr:
    items: tuple[Expression, ...]


@dataclass(frozen=True)
class MapExpr:
    items: tuple[tuple[str, Expression], ...]

    def get(self, name: str) -> Expression | None:
        for key, value in self.items:
            if key == name:
                return value
        return None

    def keys(self) -> list[str]:
        return [key for key, _ in self.items]


Expression = Union[
    Literal, Reference, CollectionReference, EachKey, EachValue, Format, ListExpr, MapExpr
]


def _parse_address(text: Any, marker: str) -> re.Match[str]:
    if not isinstance(text, str):
        raise DeclarationError(f"{marker} expects a string address, got {text!r}")
    match = _ADDRESS_RE.match(text.strip())
    if not match or not match.group("attribute"):
        raise DeclarationError(f"Invalid {marker} address: {text!r}")
    return match


def parse_expression(raw: Any) -> Expression:
    """Parse a raw YAML/JSON value into an expression tree."""
    if isinstance(raw, dict):
        markers = [key for key in raw if isinstance(key, str) and key.startswith("$")]
        if not markers:
            return MapExpr(tuple((str(key), parse_expression(value)) for key, value in raw.items()))
        marker = markers[0]
        if marker == "$ref":
            match = _parse_address(raw[marker], marker)
            return Reference(
                match.group("kind"),
                match.group("name"),
                match.group("attribute"),
                match.group("index"),
            )
        if marker == "$all":
            match = _parse_address(raw[marker], marker)
            if match.group("index"):
                raise DeclarationError(f"$all cannot address a single member: {raw[marker]!r}")
            return CollectionReference(
                match.group("kind"), match.group("name"), match.group("attribute")
            )
        if marker == "$each":
            selector = str(raw[marker])
            if selector == "key":
                return EachKey()
            parts = selector.split(".")
            if parts[0] != "value":
                raise DeclarationError(f"$each expects 'key' or 'value[.path]', got {selector!r}")
            return EachValue(tuple(parts[1:]))
        if marker == "$format":
            args = raw.get("args", [])
            if not isinstance(args, list):
                raise DeclarationError("$format args must be a list")
            return Format(str(raw[marker]), tuple(parse_expression(arg) for arg in args))
        raise DeclarationError(f"Unknown expression marker: {marker}")
    if isinstance(raw, (list, tuple)):
        return ListExpr(tuple(parse_expression(item) for item in raw))
    return Literal(raw)


def walk(expr: Expression) -> Iterator[Expression]:
    """Yield every node of an expression tree, depth first."""
    yield expr
    if isinstance(expr, ListExpr):
        for item in expr.items:
            yield from walk(item)
    elif isinstance(expr, MapExpr):
        for _, value in expr.items:
            yield from walk(value)
    elif isinstance(expr, Format):
        for arg in expr.args:
            yield from walk(arg)


def iter_references(expr: Expression) -> Iterator[Reference | CollectionReference]:
    for node in walk(expr):
        if isinstance(node, (Reference, CollectionReference)):
            yield node


def substitute_each(expr: Expression, key: str, value: Any) -> Expression:
    """Replace for-each placeholders with the literal key/value of one entry."""
    if isinstance(expr, EachKey):
        return Literal(key)
    if isinstance(expr, EachValue):
        current = value
        for part in expr.path:
            if not isinstance(current, dict) or part not in current:
                raise DeclarationError(
                    f"for_each entry {key!r} has no value at {'.'.join(('value',) + expr.path)}"
                )
            current = current[part]
        return Literal(current)
    if isinstance(expr, ListExpr):
        return ListExpr(tuple(substitute_each(item, key, value) for item in expr.items))
    if isinstance(expr, MapExpr):
        return MapExpr(tuple((k, substitute_each(v, key, value)) for k, v in expr.items))
    if isinstance(expr, Format):
        return Format(expr.template, tuple(substitute_each(a, key, value) for a in expr.args))
    return expr


def contains_each(expr: Expression) -> bool:
    return any(isinstance(node, (EachKey, EachValue)) for node in walk(expr))


AttributeLookup = Callable[[InstanceKey, str], Any]
MemberLookup = Callable[[str, str], list[InstanceKey]]


def evaluate(expr: Expression, lookup: AttributeLookup, members: MemberLookup) -> Any:
    """Resolve an expression to plain Python values.

    ``lookup`` returns the attribute value of a referenced instance, or
    ``UNKNOWN`` when the value will only be known after apply.
    """
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, Reference):
        return lookup(expr.target, expr.attribute)
    if isinstance(expr, CollectionReference):
        return [lookup(member, expr.attribute) for member in members(expr.kind, expr.name)]
    if isinstance(expr, ListExpr):
        return [evaluate(item, lookup, members) for item in expr.items]
    if isinstance(expr, MapExpr):
        return {key: evaluate(value, lookup, members) for key, value in expr.items}
    if isinstance(expr, Format):
        args = [evaluate(arg, lookup, members) for arg in expr.args]
        if any(arg == UNKNOWN for arg in args):
            return UNKNOWN
        try:
            return expr.template.format(*args)
        except (IndexError, KeyError) as exc:
            raise DeclarationError(f"Invalid $format template {expr.template!r}: {exc}") from exc
    raise DeclarationError(f"Unresolved for_each placeholder outside a for_each declaration: {expr}")
