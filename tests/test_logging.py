"""Tests for structlog helpers."""

import pytest
from proxyplane.logging import bind_context, configure_logging
from structlog.testing import capture_logs


def test_bind_context_carries_fields():
    with capture_logs() as logs:
        bind_context(run_id="run-1", instance="secret.app").info("instance_applied")

    assert logs == [
        {"run_id": "run-1", "instance": "secret.app", "event": "instance_applied", "log_level": "info"}
    ]


def test_unknown_log_format_rejected():
    with pytest.raises(ValueError, match="Unknown log format"):
        configure_logging("INFO", "xml")
