import json
import logging
import sys

import pytest

from energy_sync import logging_utils


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


def test_setup_stdout_logging_is_idempotent(restore_root, monkeypatch):
    monkeypatch.delenv("ENERGY_LOG_JSON", raising=False)
    monkeypatch.setenv("ENERGY_LOG_LEVEL", "debug")
    first = logging_utils.setup_stdout_logging(propagate_off=())
    second = logging_utils.setup_stdout_logging(propagate_off=())
    assert first is second
    assert first.stream is sys.stdout
    assert restore_root.level == logging.DEBUG
    assert isinstance(first.formatter, logging_utils.UTCFormatter)
    assert sum(1 for h in restore_root.handlers if h is first) == 1


def test_json_mode_from_env(restore_root, monkeypatch):
    monkeypatch.setenv("ENERGY_LOG_JSON", "1")
    handler = logging_utils.setup_stdout_logging(logging.WARNING, propagate_off=())
    assert isinstance(handler.formatter, logging_utils.JsonFormatter)
    assert handler.level == logging.WARNING


def test_json_formatter_includes_extras():
    record = logging.LogRecord("energy_sync.stream", logging.WARNING, __file__, 10, "lost %s", ("SP1",), None)
    record.subject = "SP1"
    payload = json.loads(logging_utils.JsonFormatter().format(record))
    assert payload["msg"] == "lost SP1"
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "energy_sync.stream"
    assert payload["subject"] == "SP1"
    assert payload["ts"].endswith("Z")


def test_warn_once_per_rate_limits(caplog, monkeypatch):
    now = [100.0]
    monkeypatch.setattr(logging_utils, "_warn_clock", lambda: now[0])
    log = logging.getLogger("energy_sync.test")
    with caplog.at_level(logging.WARNING):
        assert logging_utils.warn_once_per(1, "k", "first %s", 1, logger=log)
        assert not logging_utils.warn_once_per(1, "k", "second", logger=log)
        assert logging_utils.warn_once_per(1, "other", "third", logger=log)
        now[0] += 61
        assert logging_utils.warn_once_per(1, "k", "fourth", logger=log)
    assert [r.getMessage() for r in caplog.records] == ["first 1", "third", "fourth"]

    logging_utils.reset_warn_once_cache()
    assert logging_utils.warn_once_per(1, "other", "again", logger=log)
