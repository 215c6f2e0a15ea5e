import logging

import pytest

import logging_config
from tracking import runtime


@pytest.fixture
def isolated_tracking(tmp_path, monkeypatch):
    path = tmp_path / "functions_in_use.txt"
    monkeypatch.setattr(runtime, "_TRACKING_FILE", path)
    monkeypatch.setattr(runtime, "_SEEN", set())
    monkeypatch.setattr(runtime, "_ENABLED", True)
    return path


def test_function_names_are_recorded_once(isolated_tracking):
    runtime.t("reservations.scheduler.should_run")
    runtime.t("reservations.scheduler.should_run")
    runtime.t("mail.poller.extract_code")

    assert isolated_tracking.read_text(encoding="utf-8").splitlines() == [
        "reservations.scheduler.should_run",
        "mail.poller.extract_code",
    ]
    assert runtime.seen_functions() == {"reservations.scheduler.should_run", "mail.poller.extract_code"}


def test_tracking_can_be_disabled(isolated_tracking, monkeypatch):
    monkeypatch.setattr(runtime, "_ENABLED", False)

    runtime.t("cli.main.main")

    assert not isolated_tracking.exists()


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers = handlers
    root.setLevel(level)
    for name in logging_config.RUN_LOGGERS:
        named = logging.getLogger(name)
        for handler in named.handlers:
            handler.close()
        named.handlers = []
        named.setLevel(logging.NOTSET)


def test_setup_logging_creates_session_files(tmp_path, restore_logging):
    stale = tmp_path / "old.log"
    stale.write_text("previous session", encoding="utf-8")

    logging_config.setup_logging(production_mode=False, log_dir=str(tmp_path))
    logging.getLogger("RunStateMachine").info("🔄 [Kanata Volleyball] connecting (+0.0s)")

    assert not stale.exists()
    assert (tmp_path / "odyssey_debug.log").exists()
    assert "connecting" in (tmp_path / "reservation_runs.log").read_text(encoding="utf-8")
    assert logging_config.is_initialized()
