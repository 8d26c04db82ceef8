"""
Tests for the shared structlog configuration used by the API and the kiosk.
"""

import json

import pytest
import structlog

from shiftcheck_shared.logging_config import configure_logging


@pytest.fixture(autouse=True)
def reset_structlog():
    yield
    structlog.reset_defaults()


class TestConfigureLogging:
    def test_json_lines_at_info(self, capsys):
        configure_logging("INFO", "json")
        log = structlog.get_logger()
        log.debug("kiosk.debug_detail")
        log.info("task.completed", task_id="t1")

        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 1
        event = json.loads(lines[0])
        assert event["event"] == "task.completed"
        assert event["level"] == "info"
        assert event["task_id"] == "t1"
        assert "timestamp" in event

    def test_console_renderer_at_debug(self, capsys):
        configure_logging("debug", "text")
        structlog.get_logger().debug("pin_pad.opened")
        assert "pin_pad.opened" in capsys.readouterr().out

    def test_level_filters_below_threshold(self, capsys):
        configure_logging("warning", "console")
        log = structlog.get_logger()
        log.info("task.completed")
        log.warning("signoff.overwritten")
        out = capsys.readouterr().out
        assert "task.completed" not in out
        assert "signoff.overwritten" in out

    def test_unknown_level_is_refused(self):
        with pytest.raises(ValueError):
            configure_logging("chatty", "json")
