"""Tests for the package logging setup."""

from __future__ import annotations

import logging
import uuid

import pytest

import cylinder_ledger
from cylinder_ledger import configure_logging, resolve_log_level


@pytest.fixture
def fresh_logger_name():
    name = f"cylinder_ledger_test_{uuid.uuid4().hex}"
    yield name
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, logging.INFO),
        ("", logging.INFO),
        ("debug", logging.DEBUG),
        (" WARNING ", logging.WARNING),
        ("chatty", logging.INFO),
    ],
)
def test_resolve_log_level(raw, expected):
    assert resolve_log_level(raw) == expected


def test_configure_logging_writes_to_the_rotating_file(tmp_path, fresh_logger_name):
    log_file = tmp_path / "logs" / "ledger.log"

    logger = configure_logging(fresh_logger_name, log_file=log_file, level=logging.DEBUG)
    logger.debug("recompute finished")
    for handler in logger.handlers:
        handler.flush()

    assert logger.level == logging.DEBUG
    assert "| DEBUG | recompute finished" in log_file.read_text(encoding="utf-8")


def test_configure_logging_is_idempotent(tmp_path, fresh_logger_name):
    first = configure_logging(fresh_logger_name, log_file=tmp_path / "a.log")
    second = configure_logging(fresh_logger_name, log_file=tmp_path / "b.log")

    assert first is second
    assert len(second.handlers) == 2
    assert not (tmp_path / "b.log").exists()


def test_configure_logging_reads_level_from_environment(tmp_path, fresh_logger_name, monkeypatch):
    monkeypatch.setenv("CYLINDER_LEDGER_LOG_LEVEL", "error")

    logger = configure_logging(fresh_logger_name, log_file=tmp_path / "c.log")

    assert logger.level == logging.ERROR


def test_package_logger_is_shared():
    assert cylinder_ledger.log is logging.getLogger("cylinder_ledger")
    assert cylinder_ledger.__version__ == "1.0.0"
