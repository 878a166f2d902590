"""Tests for logging setup and the privacy filter."""

import json
import logging
import os
import sys
import time

import pytest

from shotqueue.utils.logging_config import JSONFormatter, PrivacyFilter, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    for handler in handlers:
        root.removeHandler(handler)
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def make_record(msg, *args, exc_info=None):
    return logging.LogRecord("shotqueue.tests", logging.INFO, __file__, 10, msg, args, exc_info)


@pytest.mark.parametrize("raw,expected", [
    ("/Users/alice/Desktop/shot.png", "/Users/[USER]/Desktop/shot.png"),
    ("/home/bob/.local/share/shot.png", "/home/[USER]/.local/share/shot.png"),
    (r"C:\Users\carol\Pictures\shot.png", r"C:\Users\[USER]\Pictures\shot.png"),
    ("/tmp/shot.png", "/tmp/shot.png"),
])
def test_privacy_filter_masks_account_names(raw, expected):
    assert PrivacyFilter().sanitize(raw) == expected


def test_privacy_filter_applies_to_formatted_arguments():
    record = make_record("Deleted %s", "/home/dave/shots/a.png")

    assert PrivacyFilter().filter(record)
    assert record.getMessage() == "Deleted /home/[USER]/shots/a.png"


def test_json_formatter_includes_exception_and_extras():
    try:
        raise ValueError("bad capture")
    except ValueError:
        record = make_record("capture failed", exc_info=sys.exc_info())
    record.screenshot_count = 3

    data = json.loads(JSONFormatter().format(record))

    assert data['message'] == "capture failed"
    assert data['level'] == "INFO"
    assert data['exception']['type'] == "ValueError"
    assert data['extra_screenshot_count'] == 3


def test_setup_logging_writes_json_file(tmp_path, restore_root_logger):
    app_logger = setup_logging(log_dir=tmp_path, log_level="DEBUG", enable_console=False)

    logging.getLogger("shotqueue.tests").info("queued %s", "/Users/erin/shot.png")
    for handler in restore_root_logger.handlers:
        handler.flush()

    lines = app_logger.log_file.read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[-1])
    assert entry['message'] == "queued /Users/[USER]/shot.png"
    assert restore_root_logger.level == logging.DEBUG
    assert app_logger.get_log_stats()['total_log_files'] == 1


def test_unknown_level_is_rejected(tmp_path, restore_root_logger):
    with pytest.raises(ValueError):
        setup_logging(log_dir=tmp_path, log_level="LOUD")


def test_cleanup_removes_only_expired_logs(tmp_path, restore_root_logger):
    app_logger = setup_logging(log_dir=tmp_path, enable_console=False)
    expired = tmp_path / "shotqueue.log.3"
    expired.write_text("old")
    stamp = time.time() - 40 * 24 * 3600
    os.utime(expired, (stamp, stamp))

    assert app_logger.cleanup_old_logs(days_to_keep=30) == 1
    assert not expired.exists()
    assert app_logger.log_file.exists()


def test_set_log_level_changes_root_level(tmp_path, restore_root_logger):
    app_logger = setup_logging(log_dir=tmp_path, log_level="INFO", enable_console=False)

    app_logger.set_log_level("warning")

    assert restore_root_logger.level == logging.WARNING
    with pytest.raises(ValueError):
        app_logger.set_log_level("LOUD")
