import pytest

from automation.shared.reservation_contracts import Weekday
from reservations.validation import (
    ValidationHelpers,
    is_valid_facility_url,
    is_valid_verification_code,
    validate_reservation_config,
    validate_user_profile,
)
from tests.helpers import make_config, make_profile


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://reservation.frontdesksuite.ca/rcfs/richcraftkanata", True),
        ("https://reservation.frontdesksuite.ca/rcfs/cardelrec/Home/Index", True),
        ("http://reservation.frontdesksuite.ca/rcfs/richcraftkanata", False),
        ("https://example.com/rcfs/richcraftkanata", False),
        ("https://reservation.frontdesksuite.ca/rcfs/", False),
        ("", False),
    ],
)
def test_facility_url_shape(url, expected):
    assert is_valid_facility_url(url) is expected


@pytest.mark.parametrize(
    "phone, expected",
    [
        ("613-555-0123", (True, "6135550123")),
        ("+1 613 555 0123", (True, "+16135550123")),
        ("12345", (False, "Invalid phone number format")),
        ("", (False, "Phone number is required")),
        ("613-ABC-0123", (False, "Invalid phone number format")),
    ],
)
def test_phone_number_validation(phone, expected):
    assert ValidationHelpers.validate_phone_number(phone) == expected


def test_name_is_trimmed_and_bounded():
    assert ValidationHelpers.validate_name("  Sam   Player ") == (True, "Sam Player")
    assert ValidationHelpers.validate_name("") == (False, "Name is required")
    assert ValidationHelpers.validate_name("x" * 61) == (False, "Name too long (maximum 60 characters)")


def test_gmail_requires_app_password_format():
    assert ValidationHelpers.validate_mail_password("sam@gmail.com", "abcd efgh ijkl mnop") == (True, "")
    assert ValidationHelpers.validate_mail_password("sam@gmail.com", "hunter2") == (
        False,
        "Invalid Gmail App Password format",
    )
    assert ValidationHelpers.validate_mail_password("sam@example.org", "hunter2") == (True, "")
    assert ValidationHelpers.validate_mail_password("sam@example.org", "")[0] is False


@pytest.mark.parametrize("code, expected", [("4821", True), ("0000", False), ("482", False), ("48a1", False)])
def test_verification_code_shape(code, expected):
    assert is_valid_verification_code(code) is expected


def test_valid_config_and_profile_pass():
    assert validate_reservation_config(make_config()).is_valid
    assert validate_user_profile(make_profile()).is_valid


def test_config_errors_are_collected():
    config = make_config(
        "",
        config_id="broken",
        facility_url="https://example.com",
        people=3,
        slots={Weekday.MONDAY: []},
    )

    result = validate_reservation_config(config)

    assert result.errors == [
        "Name is required",
        "Invalid facility URL",
        "Number of people must be between 1 and 2",
        "No time slots for Monday",
    ]


def test_config_without_any_day_is_rejected():
    result = validate_reservation_config(make_config(slots={}))

    assert "At least one time slot is required" in result.errors


def test_profile_mail_checks_can_be_skipped():
    profile = make_profile(imap_server="", imap_password="")

    assert not validate_user_profile(profile).is_valid
    assert validate_user_profile(profile, require_mail=False).is_valid
