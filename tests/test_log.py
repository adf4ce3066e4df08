"""Tests for logging setup."""
import json
import logging

import pytest

from sgm.log import configure_logging

pytestmark = pytest.mark.unit


@pytest.fixture
def restore_root_handlers():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_logs_go_to_stderr_not_stdout(capsys, restore_root_handlers):
    configure_logging("INFO", json_logs=True)
    logging.getLogger("sgm.test").warning("graph_built")
    captured = capsys.readouterr()
    assert captured.out == ""
    line = json.loads(captured.err.strip().splitlines()[-1])
    assert line["event"] == "graph_built"
    assert line["level"] == "warning"


def test_level_filters(capsys, restore_root_handlers):
    configure_logging("warning")
    logging.getLogger("sgm.test").info("quiet")
    assert "quiet" not in capsys.readouterr().err
