import json
from datetime import date

import pytest

from cli.export_token import ExportBundle, encode_export_token
from cli.main import build_parser, main, run_reservations, select_configs_for_today
from cli.watcher import WatchReport, build_report, print_report, watch_until_complete
from automation.shared.reservation_contracts import RunStatus, Weekday
from infrastructure.constants import EXPORT_TOKEN_ENV
from infrastructure.settings import load_settings
from reservations.status_store import StatusStore
from tests.helpers import DummyLogger, FakeDriver, FakeMailbox, fast_timings, make_config, make_profile

THURSDAY = date(2026, 10, 15)
WEDNESDAY = date(2026, 10, 14)


def _env(**extra):
    configs = [
        make_config("Kanata Volleyball"),
        make_config("Sunday Badminton", sport="Badminton", slots={Weekday.SUNDAY: ["10:00"]}, enabled=False),
    ]
    env = {EXPORT_TOKEN_ENV: encode_export_token(make_profile(), configs)}
    env.update(extra)
    return env


def _main(argv, env):
    lines = []
    code = main(argv, env=env, echo=lines.append, configure_logging=False)
    return code, lines


def test_version_needs_no_token():
    code, lines = _main(["version"], {})

    assert code == 0
    assert lines == ["ODYSSEY CLI v1.0.0"]


def test_missing_token_is_reported():
    code, lines = _main(["configs"], {})

    assert code == 1
    assert lines[0] == f"❌ {EXPORT_TOKEN_ENV} environment variable not set"


def test_malformed_token_is_reported():
    code, lines = _main(["configs"], {EXPORT_TOKEN_ENV: "garbage!"})

    assert code == 1
    assert lines[0].startswith("❌ Error loading configuration:")


@pytest.mark.parametrize("value", ["0", "-2", "abc"])
def test_invalid_prior_is_rejected(value):
    code, lines = _main(["run", "--prior", value], _env())

    assert code == 1
    assert lines == [f"❌ Invalid --prior value: {value}. Must be a positive number."]


def test_configs_lists_every_config_with_slots():
    code, lines = _main(["configs"], _env())

    assert code == 0
    assert "1. ✅ Kanata Volleyball" in lines
    assert "2. ❌ Sunday Badminton" in lines
    assert "     Sat: 6:00 PM" in lines


def test_settings_are_masked_unless_asked():
    _, masked = _main(["settings"], _env())
    _, clear = _main(["settings", "--unmask"], _env())

    assert any("***123" in line for line in masked)
    assert not any("secret" in line for line in masked)
    assert any("613-555-0123" in line for line in clear)
    assert any("secret" in line for line in clear)


def test_no_command_prints_help_and_fails(capsys):
    assert main([], env={}, echo=lambda _: None, configure_logging=False) == 1
    assert "odyssey-cli" in capsys.readouterr().out


def test_hide_and_show_are_mutually_exclusive():
    parser = build_parser()

    assert parser.parse_args(["run"]).headless is None
    assert parser.parse_args(["run", "--hide"]).headless is True
    assert parser.parse_args(["run", "--show"]).headless is False
    with pytest.raises(SystemExit):
        parser.parse_args(["run", "--hide", "--show"])


def test_only_enabled_configs_due_today_are_selected():
    due = make_config("Due")
    disabled = make_config("Disabled", enabled=False)
    later = make_config("Later", slots={Weekday.TUESDAY: ["19:00"]})

    assert select_configs_for_today([due, disabled, later], THURSDAY, 2) == [due]


async def _run(configs, *, driver_factory=None, today=THURSDAY, profile=None, mailbox=None, records_path=""):
    lines = []
    mailbox = mailbox or FakeMailbox()
    code = await run_reservations(
        ExportBundle(profile=profile or make_profile(), configs=configs),
        load_settings({"ODYSSEY_RUN_RECORDS": records_path}),
        prior_days=2,
        run_now=True,
        today=today,
        driver_factory=driver_factory or (lambda config: FakeDriver()),
        mailbox=mailbox,
        timings=fast_timings(),
        echo=lines.append,
    )
    return code, lines, mailbox


@pytest.mark.asyncio
async def test_run_now_books_due_configs_and_reports_success():
    code, lines, mailbox = await _run([make_config()])

    assert code == 0
    assert "🔍 Found 1 configurations scheduled for today (2 days before reservation)" in lines
    assert "✅ Kanata Volleyball: Successful" in lines
    assert mailbox.closed


@pytest.mark.asyncio
async def test_run_persists_terminal_records(tmp_path):
    path = tmp_path / "run_records.json"
    config = make_config()

    code, _, _ = await _run([config], records_path=str(path))

    assert code == 0
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data[config.config_id]["status"] == "success"
    assert data[config.config_id]["runType"] == "manual"


@pytest.mark.asyncio
async def test_run_reports_failures_and_exits_non_zero():
    failing = FakeDriver(failures={"find_and_click_element": "missing"})

    code, lines, _ = await _run([make_config()], driver_factory=lambda config: failing)

    assert code == 1
    assert "❌ Kanata Volleyball: Failed - Could not find the sport button." in lines


@pytest.mark.asyncio
async def test_nothing_scheduled_today_exits_cleanly():
    code, lines, _ = await _run([make_config()], today=WEDNESDAY)

    assert code == 0
    assert "❌ No configurations are scheduled to run today" in lines
    assert "   - Kanata Volleyball: Next run Oct 15, 2026" in lines


@pytest.mark.asyncio
async def test_invalid_profile_stops_before_any_run():
    created = []

    code, lines, _ = await _run(
        [make_config()],
        profile=make_profile(phone_number="12"),
        driver_factory=lambda config: created.append(config) or FakeDriver(),
    )

    assert code == 1
    assert "❌ User settings: Invalid phone number format" in lines
    assert created == []


@pytest.mark.asyncio
async def test_watch_times_out_pending_configs():
    store = StatusStore(logger=DummyLogger())
    done = make_config("Done")
    stuck = make_config("Stuck")
    store.update(done.config_id, RunStatus.success())
    store.update(stuck.config_id, RunStatus.running())
    lines = []

    report = await watch_until_complete(store, [done, stuck], timeout=0.05, poll_interval=0.01, echo=lines.append)

    assert report.succeeded == [done.config_id]
    assert report.timed_out == [stuck.config_id]
    assert not report.all_succeeded
    assert "⏰ Reservations timed out after 0.05 seconds" in lines


def test_report_lists_each_outcome():
    store = StatusStore(logger=DummyLogger())
    store.update("a", RunStatus.success())
    store.update("b", RunStatus.failed("Network error"))
    store.update("c", RunStatus.stopped())
    names = {"a": "A", "b": "B", "c": "C", "d": "D"}
    lines = []

    report = build_report(store, names)
    print_report(report, names, lines.append)

    assert isinstance(report, WatchReport)
    assert lines[-4:] == [
        "✅ A: Successful",
        "❌ B: Failed - Network error",
        "⏹️ C: Stopped",
        "⏰ D: Timed out (still pending)",
    ]
