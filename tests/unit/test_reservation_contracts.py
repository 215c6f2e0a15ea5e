import asyncio
from datetime import date, time

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from automation.shared.errors import (
    CaptchaRetryExhaustedError,
    ErrorCategory,
    ReservationError,
    ReservationErrorKind,
)
from automation.shared.reservation_contracts import (
    ReservationConfig,
    RunStatus,
    TimeSlot,
    UserProfile,
    Weekday,
    runnable_configs,
)
from infrastructure.settings import load_settings
from tests.helpers import make_config, make_profile


@pytest.mark.parametrize(
    "text, expected",
    [("18:00", TimeSlot(18, 0)), ("18:00:00", TimeSlot(18, 0)), ("6:00 PM", TimeSlot(18, 0)),
     ("8:30am", TimeSlot(8, 30)), ("12:15 AM", TimeSlot(0, 15))],
)
def test_time_slot_parsing(text, expected):
    assert TimeSlot.parse(text) == expected


@pytest.mark.parametrize("text", ["", "25:00", "6 PM", "13:00 PM"])
def test_invalid_time_slots_are_rejected(text):
    with pytest.raises(ValueError):
        TimeSlot.parse(text)


def test_time_slot_label_matches_site_format():
    assert TimeSlot(8, 30).label == "8:30 AM"
    assert TimeSlot(12, 0).label == "12:00 PM"
    assert TimeSlot(0, 5).label == "12:05 AM"


def test_weekday_helpers():
    assert Weekday.from_date(date(2026, 10, 17)) is Weekday.SATURDAY
    assert Weekday.SATURDAY.python_weekday == 5
    assert Weekday.SUNDAY.python_weekday == 6
    assert Weekday.parse("tue") is Weekday.TUESDAY
    with pytest.raises(ValueError):
        Weekday.parse("Funday")


def test_config_slots_keep_user_order_and_survive_dict_round_trip():
    config = make_config(slots={"Monday": ["19:00", "8:30 AM", "19:00"], Weekday.FRIDAY: []})

    assert config.day_time_slots[Weekday.MONDAY] == (TimeSlot(19, 0), TimeSlot(8, 30))
    assert config.active_days() == [Weekday.MONDAY]
    assert config.slot_for(Weekday.MONDAY) == TimeSlot(19, 0)
    assert config.slot_for(Weekday.FRIDAY) is None
    assert config.schedule_summary == "Mon 7:00 PM, 8:30 AM"
    assert ReservationConfig.from_dict(config.to_dict()) == config


def test_facility_name_comes_from_url_slug():
    assert make_config().facility_name == "Richcraftkanata"
    assert make_config(facility_url="not a url").facility_name == "not a url"


def test_runnable_configs_need_enabled_and_slots():
    keep = make_config("Keep")
    disabled = make_config("Disabled", enabled=False)
    empty = make_config("Empty", slots={Weekday.MONDAY: []})

    assert runnable_configs([keep, disabled, empty]) == [keep]


def test_profile_masks_and_form_phone():
    profile = make_profile()

    assert profile.contact_phone == "6135550123"
    assert profile.masked_phone == "***123"
    assert profile.masked_email == "***@example.org"
    assert UserProfile.from_dict(profile.to_dict()) == profile


def test_run_status_descriptions():
    assert RunStatus.failed("boom").description == "Failed: boom"
    assert RunStatus.success().description == "Successful"
    assert RunStatus.running().is_terminal is False
    assert RunStatus.stopped().is_terminal is True


def test_error_kind_lookup_and_categories():
    assert ReservationErrorKind.from_code("RESERVATION_CAPTCHA_001") is ReservationErrorKind.CAPTCHA_RETRY_EXHAUSTED
    assert ReservationErrorKind.PAGE_LOAD_TIMEOUT.category is ErrorCategory.NETWORK
    with pytest.raises(ValueError):
        ReservationErrorKind.from_code("NOPE")


@pytest.mark.parametrize(
    "exc, kind",
    [
        (PlaywrightTimeoutError("Timeout 30000ms exceeded"), ReservationErrorKind.PAGE_LOAD_TIMEOUT),
        (asyncio.TimeoutError(), ReservationErrorKind.BROWSER_TIMEOUT),
        (ConnectionResetError("reset"), ReservationErrorKind.NETWORK),
        (KeyError("x"), ReservationErrorKind.UNKNOWN),
    ],
)
def test_from_exception_maps_onto_taxonomy(exc, kind):
    assert ReservationError.from_exception(exc).kind is kind


def test_network_errors_carry_detail_other_kinds_do_not():
    network = ReservationError(ReservationErrorKind.NETWORK, "ConnectionResetError")
    captcha = CaptchaRetryExhaustedError(3)

    assert network.user_message == "Network error: ConnectionResetError"
    assert captcha.user_message == ReservationErrorKind.CAPTCHA_RETRY_EXHAUSTED.message
    assert ReservationError.from_exception(captcha) is captcha


def test_load_settings_reads_mapping_and_falls_back_on_bad_values():
    settings = load_settings({
        "ODYSSEY_TIMEZONE": "Mars/Olympus",
        "ODYSSEY_AUTORUN_TIME": "07:30",
        "ODYSSEY_PRIOR_DAYS": "-4",
        "ODYSSEY_HEADLESS": "no",
        "ODYSSEY_RUN_TIMEOUT": "abc",
        "TELEGRAM_ENABLED": "true",
        "TELEGRAM_BOT_TOKEN": "123:abc",
    })

    assert settings.timezone == "America/Toronto"
    assert settings.autorun_time == time(7, 30)
    assert settings.prior_days == 2
    assert settings.headless is False
    assert settings.run_timeout == 600.0
    assert settings.telegram_configured is False


def test_telegram_configured_requires_token_and_chat():
    settings = load_settings({"TELEGRAM_ENABLED": "1", "TELEGRAM_BOT_TOKEN": "t", "TELEGRAM_CHAT_ID": "42"})

    assert settings.telegram_configured is True
