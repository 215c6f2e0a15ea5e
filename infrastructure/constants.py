"""
Constants Module - Centralized configuration values
===================================================

PURPOSE: Single source of truth for selectors, timeouts and patterns
PATTERN: Module-level values plus small constant classes grouped by concern
SCOPE: Reservation automation, verification mail and validation
"""
from tracking import t

# Facility Website
FACILITY_HOST = "reservation.frontdesksuite.ca"
FACILITY_PATH_PREFIX = "/rcfs/"
FACILITY_URL_PATTERN = r"https://reservation\.frontdesksuite\.ca/rcfs/([^/]+)"

# Scheduling
DEFAULT_TIMEZONE = "America/Toronto"
DEFAULT_AUTORUN_TIME = "18:00:01"  # Booking window opens at 6 PM facility time
DEFAULT_PRIOR_DAYS = 2
SCHEDULE_LOOKAHEAD_DAYS = 35  # 5 weeks, covers wrap-around for any prior value up to a month
WAIT_PROGRESS_INTERVAL = 10.0  # seconds between "still waiting" reports

# Export token
EXPORT_TOKEN_ENV = "ODYSSEY_EXPORT_TOKEN"
APP_VERSION = "1.0.0"


class PageTimeouts:
    """Timeouts used while walking the reservation form (seconds)"""
    PAGE_LOAD = 30.0             # DOM ready after navigation
    GROUP_SIZE_PAGE = 30.0       # Group size page after picking the sport
    CONTACT_INFO_PAGE = 10.0     # Contact form after picking a slot
    AFTER_CONFIRM_CLICK = 0.3    # Settle time before probing for the retry page
    VERIFICATION_SETTLE = 2.0    # Wait before checking whether verification is required
    CODE_SUBMIT_SETTLE = 2.0     # Wait after submitting a code
    ELEMENT_POLL_INTERVAL = 0.25


class RunLimits:
    """Bounds for loops inside a single reservation run"""
    CAPTCHA_MAX_ATTEMPTS = 3
    CAPTCHA_RETRY_PAUSE = (1.5, 2.2)   # seconds, after detecting the retry page
    CAPTCHA_CLICK_PAUSE = (1.0, 1.8)   # seconds, before re-clicking confirm
    VERIFICATION_TIMEOUT = 300.0       # 5 minutes
    VERIFICATION_POLL_INTERVAL = 1.0
    RUN_TIMEOUT = 600.0                # covers the whole flow plus the verification loop
    WATCH_TIMEOUT = 300.0
    WATCH_POLL_INTERVAL = 1.0


class MailConstants:
    """Verification email lookup"""
    SENDER = "noreply@frontdesksuite.com"
    SUBJECT = "Verify your email"
    SEARCH_WINDOW_MINUTES = 10
    INITIAL_WAIT_SECONDS = 10.0
    CONSECUTIVE_FAILURE_LIMIT = 3
    CODE_MAX_AGE_SECONDS = 300.0
    CLOCK_SKEW_SECONDS = 30
    IMAP_PORT = 993
    MAILBOX = "INBOX"
    FETCH_LIMIT = 20


# Ordered from most to least specific; the first pattern with a match wins
VERIFICATION_CODE_PATTERNS = [
    r"Your verification code is:\s*(\d{4})\s*\.",
    r"verification code is:\s*(\d{4})",
    r"code is:\s*(\d{4})",
    r"code:\s*(\d{4})",
    r"\b(\d{4})\b",
]
INVALID_VERIFICATION_CODES = {"0000"}


class Selectors:
    """DOM selectors for the facility reservation flow"""
    NUMBER_OF_PEOPLE = ['input[name="ReservationCount"]', 'input[type="number"]']
    CONFIRM_BUTTON = ['#submit-btn', 'button[type="submit"]', '.mdc-button']
    PHONE = ['input[type="tel"]', 'input[name*="PhoneNumber"]']
    EMAIL = ['input[type="email"]', 'input[name*="Email"]']
    NAME = ['input[name*="field2021"]', 'input[id^="field"]']
    VERIFICATION_CODE = ['input[name*="code"]', 'input[type="text"]']
    DAY_HEADER = '.header-text'
    CONFIRMED_RESERVATION = '.confirmed-reservation'


# Text markers read from the rendered page (compared lower-cased)
RETRY_PAGE_MARKERS = ['retry']
VERIFICATION_PAGE_MARKERS = [
    'verification',
    'verify',
    'enter it below',
    'check your email',
    'receive an email',
]
CONFIRMATION_MARKERS = ['is now confirmed']
VERIFICATION_ERROR_MARKERS = [
    'invalid code',
    'incorrect code',
    'code is incorrect',
    'wrong code',
    'verification failed',
]


class ValidationLimits:
    """Limits applied to reservation configs and user profiles"""
    MIN_NUMBER_OF_PEOPLE = 1
    MAX_NUMBER_OF_PEOPLE = 2
    MAX_CONFIG_NAME_LENGTH = 60
    MAX_SPORT_NAME_LENGTH = 50
    PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"
    EMAIL_PATTERN = r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$"
    IMAP_SERVER_PATTERN = (
        r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
        r"(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
    )


# Browser launch
BROWSER_LAUNCH_ARGS = [
    '--no-sandbox',
    '--disable-dev-shm-usage',
    '--disable-blink-features=AutomationControlled',
    '--disable-infobars',
    '--window-size=1440,900',
]
BROWSER_USER_AGENT = (
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 '
    '(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36'
)
BROWSER_VIEWPORT = {'width': 1440, 'height': 900}
BROWSER_LOCALE = 'en-CA'


def mask_code(code: str) -> str:
    """Hide a verification code for logging"""
    t('infrastructure.constants.mask_code')
    return "*" * len(code or "")
