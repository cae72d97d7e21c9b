import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from config import LOG_FORMAT, AppConfig, init_logging, load_config


def test_defaults():
    config = load_config({})
    assert config.company_scope == "default"
    assert config.log_level == "INFO"
    assert config.workbook_path is None
    assert config.persistence_timeout_s == 10.0
    assert config.persistence_max_attempts == 3


def test_reads_prefixed_environment():
    config = load_config(
        {
            "ITINERARY_WORKBOOK_PATH": "/data/fleet.xlsx",
            "ITINERARY_COMPANY_SCOPE": " acme ",
            "ITINERARY_LOG_LEVEL": "debug",
            "ITINERARY_PERSISTENCE_TIMEOUT_S": "2.5",
            "ITINERARY_PERSISTENCE_MAX_ATTEMPTS": "5",
            "UNRELATED": "x",
        }
    )
    assert config.workbook_path == Path("/data/fleet.xlsx")
    assert config.company_scope == "acme"
    assert config.log_level == "DEBUG"
    assert config.persistence_timeout_s == 2.5
    assert config.persistence_max_attempts == 5


def test_blank_values_fall_back_to_defaults():
    assert load_config({"ITINERARY_LOG_LEVEL": "  "}).log_level == "INFO"


@pytest.mark.parametrize(
    "env",
    [
        {"ITINERARY_LOG_LEVEL": "chatty"},
        {"ITINERARY_PERSISTENCE_TIMEOUT_S": "0"},
        {"ITINERARY_PERSISTENCE_MAX_ATTEMPTS": "0"},
        {"ITINERARY_MIN_VISIBLE_HEIGHT_PERCENT": "150"},
    ],
)
def test_invalid_values_rejected(env):
    with pytest.raises(ValidationError):
        load_config(env)


def test_init_logging_writes_to_file(tmp_path):
    log_file = tmp_path / "planner.log"
    init_logging(AppConfig(log_level="WARNING", log_file=log_file))
    try:
        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert any(isinstance(h, logging.FileHandler) for h in root.handlers)
        assert root.handlers[0].formatter._fmt == LOG_FORMAT

        logging.getLogger("board").warning("Excluding entry: X")
        for h in root.handlers:
            h.flush()
        assert "[WARNING] board - Excluding entry: X" in log_file.read_text(encoding="utf-8")
    finally:
        for h in list(logging.getLogger().handlers):
            if isinstance(h, logging.FileHandler):
                logging.getLogger().removeHandler(h)
                h.close()
