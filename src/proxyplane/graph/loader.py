"""
Declaration file loading.

Declaration documents are YAML (or JSON, which YAML accepts) files holding
a ``resources`` map and an ``outputs`` map.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml

from proxyplane.core.errors import DeclarationError
from proxyplane.graph.declarations import DeclarationSet

logger = structlog.get_logger()


def read_document(path: str | Path) -> dict[str, Any]:
    """Read a raw declaration document from disk."""
    path = Path(path)
    if not path.exists():
        raise DeclarationError(f"Declaration file not found: {path}", details={"path": str(path)})

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise DeclarationError(f"Invalid YAML in {path}: {e}", details={"path": str(path)}) from e

    if not isinstance(data, dict):
        raise DeclarationError(f"{path} must contain a mapping", details={"path": str(path)})

    logger.debug("loaded_declarations", path=str(path))
    return data


def load_declarations(path: str | Path) -> DeclarationSet:
    """
    Convenience function to load and parse a declaration file.

    Args:
        path: Declaration file path

    Returns:
        DeclarationSet instance
    """
    return DeclarationSet.from_dict(read_document(path))
