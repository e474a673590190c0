import logging

import pytest

from tenant_restore.logging import LOGGER_NAME, clear_log_context


@pytest.fixture(autouse=True)
def reset_restore_logging():
    yield
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = True
    clear_log_context()
