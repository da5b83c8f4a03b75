"""Declarations, typed expressions and dependency graph construction."""

from proxyplane.graph.builder import GraphBuilder, ResourceGraph
from proxyplane.graph.declarations import (
    DeclarationSet,
    OutputDeclaration,
    ResourceDeclaration,
    ResourceInstance,
    expand,
)
from proxyplane.graph.expressions import (
    UNKNOWN,
    CollectionReference,
    InstanceKey,
    Reference,
    parse_expression,
)
from proxyplane.graph.kinds import BUILTIN_KINDS, ResourceKind
from proxyplane.graph.loader import load_declarations, read_document

__all__ = [
    "BUILTIN_KINDS",
    "CollectionReference",
    "DeclarationSet",
    "GraphBuilder",
    "InstanceKey",
    "OutputDeclaration",
    "Reference",
    "ResourceDeclaration",
    "ResourceGraph",
    "ResourceInstance",
    "ResourceKind",
    "UNKNOWN",
    "expand",
    "load_declarations",
    "parse_expression",
    "read_document",
]
