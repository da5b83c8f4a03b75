"""Declarative reconciler for secure database proxy access."""

__version__ = "0.1.0"
