import json
import logging

from dev_browser.logging_utils import log_event, mask_token, setup_logging


def test_log_event_renders_key_values(caplog):
    logger = logging.getLogger("dev_browser.test")
    with caplog.at_level(logging.INFO, logger="dev_browser.test"):
        log_event(logger, level=logging.INFO, event="session_created", name="main", ok=True, skipped=None)

    assert caplog.records[-1].getMessage() == "browser event=session_created name=main ok=true"


def test_mask_token():
    assert mask_token("abcdef123456") == "abcd..."
    assert mask_token(None) == "<none>"
    assert mask_token("") == "<none>"


def test_setup_logging_with_file_and_config(tmp_path):
    config_path = tmp_path / "logging.json"
    config_path.write_text(
        json.dumps(
            {
                "version": 1,
                "disable_existing_loggers": False,
                "handlers": {"null": {"class": "logging.NullHandler"}},
                "root": {"handlers": ["null"], "level": "WARNING"},
            }
        ),
        encoding="utf-8",
    )
    log_path = tmp_path / "logs" / "dev-browser.log"

    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        logger = setup_logging(config_path, log_path, verbose=True)
        assert logger.name == "dev_browser"
        assert root.level == logging.DEBUG

        logger.info("written to file")
        for handler in root.handlers:
            handler.flush()
        assert "written to file" in log_path.read_text(encoding="utf-8")
    finally:
        for handler in root.handlers[:]:
            if handler not in saved_handlers:
                root.removeHandler(handler)
                handler.close()
        for handler in saved_handlers:
            if handler not in root.handlers:
                root.addHandler(handler)
        root.setLevel(saved_level)
