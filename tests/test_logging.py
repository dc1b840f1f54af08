from __future__ import annotations

import logging

from availability_engine.core.logging import configure_logging, mask_secret


def test_mask_secret_never_returns_the_full_token():
    token = "abcdefghijklmnopqrstuvwxyz"
    masked = mask_secret(token)

    assert token not in masked
    assert masked.startswith("abcdef")
    assert mask_secret(None) == "<none>"
    assert mask_secret("short") == "***"


def test_configure_logging_writes_to_log_dir(tmp_path):
    root = logging.getLogger()
    previous = list(root.handlers)
    for handler in previous:
        root.removeHandler(handler)
    try:
        configure_logging("INFO", tmp_path / "logs")
        logging.getLogger("availability_engine.test").info("hello log file")
        for handler in root.handlers:
            handler.flush()

        assert "hello log file" in (tmp_path / "logs" / "availability.log").read_text()
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)
        for handler in previous:
            root.addHandler(handler)
