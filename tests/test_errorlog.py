import logging

import pytest

from work_checker.errorlog import ErrorLogBuffer, install_error_log


@pytest.fixture
def error_log():
    buffer = install_error_log(ErrorLogBuffer(capacity=2))
    yield buffer
    logging.getLogger("work_checker").removeHandler(buffer)


def test_buffer_records_warnings_with_location(error_log: ErrorLogBuffer) -> None:
    logging.getLogger("work_checker.sessions").info("ignored")
    logging.getLogger("work_checker.sessions").warning("Work has already started!")

    [entry] = error_log.entries()
    assert entry.level == "warning"
    assert entry.location.startswith("work_checker.sessions:test_buffer_records_warnings_with_location:")
    assert entry.message == "Work has already started!"
    assert "warning at work_checker.sessions" in error_log.human_readable()


def test_buffer_keeps_most_recent_entries(error_log: ErrorLogBuffer) -> None:
    logger = logging.getLogger("work_checker.db")
    for index in range(3):
        logger.error("failure %d", index)

    assert [entry.message for entry in error_log.entries()] == ["failure 1", "failure 2"]
    error_log.clear()
    assert error_log.entries() == []


def test_install_is_idempotent(error_log: ErrorLogBuffer) -> None:
    assert install_error_log() is error_log
    assert install_error_log(error_log) is error_log
