"""Unit tests for structlog configuration."""

from __future__ import annotations

import pytest
import structlog

from rowstream.observability.log import configure_logging


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


def test_json_output(capsys: pytest.CaptureFixture[str]):
    configure_logging("info", json=True)
    structlog.get_logger().info("registry.schema_registered", schema_id=3)
    out = capsys.readouterr().out
    assert '"event": "registry.schema_registered"' in out
    assert '"schema_id": 3' in out


def test_level_filtering(capsys: pytest.CaptureFixture[str]):
    configure_logging("warning", json=True)
    structlog.get_logger().info("producer.sent")
    assert capsys.readouterr().out == ""


def test_unknown_level():
    with pytest.raises(ValueError, match="verbose"):
        configure_logging("verbose")
