"""
Validation utility functions
Checks reservation configs, user profiles and verification codes
"""
from tracking import t

import re
from dataclasses import dataclass, field
from typing import List, Tuple
from urllib.parse import urlsplit

from automation.shared.reservation_contracts import ReservationConfig, UserProfile
from infrastructure.constants import (
    FACILITY_HOST,
    FACILITY_PATH_PREFIX,
    INVALID_VERIFICATION_CODES,
    ValidationLimits,
)

GMAIL_DOMAINS = ("gmail.com", "googlemail.com")
GMAIL_APP_PASSWORD_PATTERN = r"^[a-z]{4}\s[a-z]{4}\s[a-z]{4}\s[a-z]{4}$"


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add(self, ok: bool, message: str) -> None:
        if not ok and message:
            self.errors.append(message)


class ValidationHelpers:
    """Collection of validation helper functions"""

    @staticmethod
    def validate_name(name: str, field_name: str = "Name", max_length: int = ValidationLimits.MAX_CONFIG_NAME_LENGTH) -> Tuple[bool, str]:
        """
        Validate a required display name
        Returns: (is_valid, cleaned_name_or_error_message)
        """
        t('reservations.validation.ValidationHelpers.validate_name')
        name = ' '.join((name or '').split())
        if not name:
            return False, f"{field_name} is required"
        if len(name) > max_length:
            return False, f"{field_name} too long (maximum {max_length} characters)"
        return True, name

    @staticmethod
    def validate_facility_url(url: str) -> Tuple[bool, str]:
        """
        Validate the facility reservation URL
        Returns: (is_valid, url_or_error_message)
        """
        t('reservations.validation.ValidationHelpers.validate_facility_url')
        url = (url or '').strip()
        if is_valid_facility_url(url):
            return True, url
        return False, "Invalid facility URL"

    @staticmethod
    def validate_phone_number(phone: str) -> Tuple[bool, str]:
        """
        Validate phone number format
        Returns: (is_valid, cleaned_phone_or_error_message)
        """
        t('reservations.validation.ValidationHelpers.validate_phone_number')
        cleaned = (phone or '').replace('-', '').replace(' ', '').strip()
        digits_only = ''.join(c for c in cleaned if c.isdigit())
        if not cleaned:
            return False, "Phone number is required"
        if len(digits_only) < 7 or len(digits_only) > 15:
            return False, "Invalid phone number format"
        if not re.match(ValidationLimits.PHONE_PATTERN, cleaned):
            return False, "Invalid phone number format"
        return True, cleaned

    @staticmethod
    def validate_email(email: str) -> Tuple[bool, str]:
        """
        Validate email format
        Returns: (is_valid, cleaned_email_or_error_message)
        """
        t('reservations.validation.ValidationHelpers.validate_email')
        email = (email or '').strip()
        if not email:
            return False, "Email address is required for verification"
        if re.match(ValidationLimits.EMAIL_PATTERN, email):
            return True, email
        return False, "Invalid email format"

    @staticmethod
    def validate_imap_server(server: str) -> Tuple[bool, str]:
        t('reservations.validation.ValidationHelpers.validate_imap_server')
        server = (server or '').strip()
        if server and re.match(ValidationLimits.IMAP_SERVER_PATTERN, server):
            return True, server
        return False, "Invalid IMAP server address"

    @staticmethod
    def validate_mail_password(email: str, password: str) -> Tuple[bool, str]:
        """
        Gmail accounts need an app password ("abcd efgh ijkl mnop")
        Returns: (is_valid, error_message)
        """
        t('reservations.validation.ValidationHelpers.validate_mail_password')
        if not password:
            return False, "Email password is required for verification"
        domain = (email or '').rsplit('@', 1)[-1].lower()
        if domain in GMAIL_DOMAINS and not re.match(GMAIL_APP_PASSWORD_PATTERN, password):
            return False, "Invalid Gmail App Password format"
        return True, ""


def is_valid_facility_url(url: str) -> bool:
    """https://reservation.frontdesksuite.ca/rcfs/<facility>[/...]"""
    t('reservations.validation.is_valid_facility_url')
    parts = urlsplit((url or '').strip())
    if parts.scheme != 'https' or parts.netloc.lower() != FACILITY_HOST:
        return False
    if not parts.path.startswith(FACILITY_PATH_PREFIX):
        return False
    return bool(parts.path[len(FACILITY_PATH_PREFIX):].strip('/'))


def is_valid_verification_code(code: str) -> bool:
    t('reservations.validation.is_valid_verification_code')
    code = (code or '').strip()
    return len(code) == 4 and code.isdigit() and code not in INVALID_VERIFICATION_CODES


def validate_reservation_config(config: ReservationConfig) -> ValidationResult:
    t('reservations.validation.validate_reservation_config')
    result = ValidationResult()
    result.add(*ValidationHelpers.validate_name(config.name))
    result.add(*ValidationHelpers.validate_facility_url(config.facility_url))

    sport_ok, sport_message = ValidationHelpers.validate_name(
        config.sport_name, "Sport name", ValidationLimits.MAX_SPORT_NAME_LENGTH
    )
    result.add(sport_ok, sport_message)

    people = config.number_of_people
    if not ValidationLimits.MIN_NUMBER_OF_PEOPLE <= people <= ValidationLimits.MAX_NUMBER_OF_PEOPLE:
        result.errors.append(
            f"Number of people must be between {ValidationLimits.MIN_NUMBER_OF_PEOPLE} "
            f"and {ValidationLimits.MAX_NUMBER_OF_PEOPLE}"
        )

    if not config.day_time_slots:
        result.errors.append("At least one time slot is required")
    for day, slots in config.day_time_slots.items():
        if not slots:
            result.errors.append(f"No time slots for {day.value}")
    return result


def validate_user_profile(profile: UserProfile, *, require_mail: bool = True) -> ValidationResult:
    t('reservations.validation.validate_user_profile')
    result = ValidationResult()
    result.add(*ValidationHelpers.validate_name(profile.name))
    result.add(*ValidationHelpers.validate_phone_number(profile.phone_number))
    result.add(*ValidationHelpers.validate_email(profile.email))
    if require_mail:
        result.add(*ValidationHelpers.validate_imap_server(profile.imap_server))
        result.add(*ValidationHelpers.validate_mail_password(profile.email, profile.imap_password))
    return result


__all__ = [
    "ValidationResult",
    "ValidationHelpers",
    "is_valid_facility_url",
    "is_valid_verification_code",
    "validate_reservation_config",
    "validate_user_profile",
]
