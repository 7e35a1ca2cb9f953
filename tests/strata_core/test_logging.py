"""Unit tests for logging setup and secret masking."""

import logging

from loguru import logger

from strata_core.logging import InterceptHandler, mask_secret, setup_logging


class TestMaskSecret:
    """Tests for credential masking."""

    def test_keeps_first_characters(self):
        assert mask_secret("hunter2") == "hu****"

    def test_custom_visible_count(self):
        assert mask_secret("hunter2", visible=4) == "hunt****"

    def test_empty_values(self):
        assert mask_secret("") == ""
        assert mask_secret(None) == ""


class TestSetupLogging:
    """Tests for stdlib interception."""

    def test_protocol_loggers_intercepted(self):
        """paramiko and urllib3 records should be routed into loguru."""
        setup_logging("DEBUG")

        for name in ("paramiko", "urllib3", "uvicorn"):
            handlers = logging.getLogger(name).handlers
            assert any(isinstance(h, InterceptHandler) for h in handlers)
        assert logging.getLogger("paramiko.transport").level == logging.WARNING

    def test_stdlib_records_reach_loguru(self):
        setup_logging("DEBUG")
        messages = []
        sink = logger.add(messages.append, level="DEBUG")
        try:
            logging.getLogger("paramiko").warning("handshake slow")
        finally:
            logger.remove(sink)

        assert any("handshake slow" in str(m) for m in messages)
