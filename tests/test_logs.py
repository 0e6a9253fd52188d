from __future__ import annotations

import logging

from loguru import logger

from bbscope.logs import InterceptHandler, log_level, setup_logging


def test_log_level_flags():
    assert log_level() == "WARNING"
    assert log_level(verbose=True) == "DEBUG"
    assert log_level(quiet=True) == "ERROR"
    # --verbose wins when both are given
    assert log_level(verbose=True, quiet=True) == "DEBUG"


def test_stdlib_records_reach_loguru():
    setup_logging(verbose=True)
    messages = []
    sink_id = logger.add(messages.append, level="DEBUG", format="{level}|{message}")
    try:
        logging.getLogger("bbscope.test").debug("resolved %s", "acme/widgets")
    finally:
        logger.remove(sink_id)

    assert any(m.startswith("DEBUG|resolved acme/widgets") for m in messages)
    assert any(isinstance(h, InterceptHandler) for h in logging.getLogger().handlers)


def test_quiet_mode_filters_warnings(capsys):
    setup_logging(quiet=True)
    logging.getLogger("bbscope.test").warning("Failed to load local config")

    assert "Failed to load local config" not in capsys.readouterr().err
