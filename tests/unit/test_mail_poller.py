import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from automation.shared.errors import MailConnectionError, ReservationErrorKind
from mail.code_pool import VerificationCodePool
from mail.poller import VerificationMailPoller, extract_code
from tests.helpers import DummyLogger, FakeMailbox

NOW = datetime(2026, 10, 15, 22, 0, 30, tzinfo=timezone.utc)


def _poller(mailbox, **kwargs):
    kwargs.setdefault("clock", lambda: NOW)
    return VerificationMailPoller(mailbox, logger=DummyLogger(), **kwargs)


@pytest.mark.parametrize(
    "body, expected",
    [
        ("Your verification code is: 4821.", "4821"),
        ("Hello,\nyour verification code is:  7302 - valid 5 minutes", "7302"),
        ("Code: 5550", "5550"),
        ("Use 9134 to continue", "9134"),
        ("Your verification code is: 0000.", None),
        ("No digits here", None),
        ("Reference 12345 only", None),
    ],
)
def test_extract_code_patterns(body, expected):
    assert extract_code(body) == expected


def test_extract_code_prefers_labelled_code_over_other_numbers():
    body = "Booking 2026 at 1830. Your verification code is: 6614."

    assert extract_code(body) == "6614"


@pytest.mark.asyncio
async def test_search_returns_matching_messages_newest_first():
    mailbox = FakeMailbox()
    mailbox.add_message("Your verification code is: 1111.", NOW - timedelta(minutes=3))
    mailbox.add_message("Your verification code is: 2222.", NOW - timedelta(minutes=1))
    mailbox.add_message("Your verification code is: 3333.", NOW - timedelta(minutes=2), sender="someone@else.com")
    mailbox.add_message("Your verification code is: 4444.", NOW - timedelta(minutes=30))
    poller = _poller(mailbox)

    messages = await poller.search_for_verification_emails(NOW - timedelta(minutes=5))

    assert [extract_code(message.body) for message in messages] == ["2222", "1111"]


@pytest.mark.asyncio
async def test_latest_code_comes_from_most_recent_message():
    mailbox = FakeMailbox()
    mailbox.add_message("Your verification code is: 1111.", NOW - timedelta(minutes=4))
    mailbox.add_message("Your verification code is: 9999.", NOW - timedelta(seconds=10))
    poller = _poller(mailbox)

    assert await poller.latest_code(NOW - timedelta(minutes=5)) == "9999"


def test_window_start_never_precedes_recent_window():
    poller = _poller(FakeMailbox(), window_minutes=10)

    assert poller.window_start(NOW - timedelta(hours=2)) == NOW - timedelta(minutes=10)
    assert poller.window_start(None) == NOW - timedelta(minutes=10)


def test_window_start_floors_to_the_second_and_allows_clock_skew():
    poller = _poller(FakeMailbox(), clock_skew_seconds=30)
    since = datetime(2026, 10, 15, 22, 0, 5, 700000, tzinfo=timezone.utc)

    assert poller.window_start(since) == datetime(2026, 10, 15, 21, 59, 35, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_code_mailed_in_the_same_second_verification_started_is_found():
    mailbox = FakeMailbox()
    mailbox.add_message("Your verification code is: 4321.", datetime(2026, 10, 15, 22, 0, 5, tzinfo=timezone.utc))
    # Mail server clock running a few seconds behind the host
    mailbox.add_message("Your verification code is: 8765.", datetime(2026, 10, 15, 21, 59, 50, tzinfo=timezone.utc))
    poller = _poller(mailbox)

    messages = await poller.search_for_verification_emails(
        datetime(2026, 10, 15, 22, 0, 5, 700000, tzinfo=timezone.utc)
    )

    assert [extract_code(message.body) for message in messages] == ["4321", "8765"]


@pytest.mark.asyncio
async def test_connection_failures_below_limit_look_like_no_message():
    mailbox = FakeMailbox(failures=2)
    mailbox.add_message("Your verification code is: 1234.", NOW)
    poller = _poller(mailbox, failure_limit=3)

    assert await poller.search_for_verification_emails(NOW - timedelta(minutes=1)) == []
    assert await poller.search_for_verification_emails(NOW - timedelta(minutes=1)) == []
    found = await poller.search_for_verification_emails(NOW - timedelta(minutes=1))

    assert len(found) == 1
    assert poller.consecutive_failures() == 0


@pytest.mark.asyncio
async def test_consecutive_failures_at_limit_raise():
    poller = _poller(FakeMailbox(failures=5), failure_limit=3)

    await poller.search_for_verification_emails()
    await poller.search_for_verification_emails()
    with pytest.raises(MailConnectionError) as excinfo:
        await poller.search_for_verification_emails()

    assert excinfo.value.kind is ReservationErrorKind.MAIL_CONNECTION_FAILED


@pytest.mark.asyncio
async def test_authentication_failure_raises_immediately():
    poller = _poller(FakeMailbox(authentication_failure=True), failure_limit=3)

    with pytest.raises(MailConnectionError) as excinfo:
        await poller.search_for_verification_emails()

    assert excinfo.value.kind is ReservationErrorKind.MAIL_AUTHENTICATION_FAILED


@pytest.mark.asyncio
async def test_code_pool_withholds_only_codes_the_run_consumed():
    mailbox = FakeMailbox()
    mailbox.add_message("Your verification code is: 1234.", NOW - timedelta(seconds=30))
    mailbox.add_message("Your verification code is: 5678.", NOW - timedelta(seconds=5))
    mailbox.add_message("Your verification code is: 4444.", NOW - timedelta(minutes=8))
    pool = VerificationCodePool(_poller(mailbox), clock=lambda: NOW, logger=DummyLogger())
    since = NOW - timedelta(minutes=9)

    first = await pool.fetch_codes("run-a", since)
    for code in first:
        pool.mark_consumed("run-a", code)
    again = await pool.fetch_codes("run-a", since)
    other = await pool.fetch_codes("run-b", since)

    assert first == ["5678", "1234"]
    assert again == []
    assert other == ["5678", "1234"]
    assert pool.consumed_count("run-a") == 2

    pool.release("run-a")
    assert pool.consumed_count("run-a") == 0


@pytest.mark.asyncio
async def test_code_pool_offers_unsubmitted_codes_again():
    mailbox = FakeMailbox()
    mailbox.add_message("Your verification code is: 4321.", NOW - timedelta(seconds=5))
    pool = VerificationCodePool(_poller(mailbox), clock=lambda: NOW, logger=DummyLogger())
    since = NOW - timedelta(minutes=1)

    assert await pool.fetch_codes("run-a", since) == ["4321"]
    assert await pool.fetch_codes("run-a", since) == ["4321"]

    pool.mark_consumed("run-a", "4321")
    assert await pool.fetch_codes("run-a", since) == []


@pytest.mark.asyncio
async def test_concurrent_runs_keep_separate_failure_budgets():
    mailbox = FakeMailbox(failures=2)
    poller = _poller(mailbox, failure_limit=2)
    pool = VerificationCodePool(poller, clock=lambda: NOW, logger=DummyLogger())
    since = NOW - timedelta(minutes=1)

    first, second = await asyncio.gather(pool.fetch_codes("run-a", since), pool.fetch_codes("run-b", since))

    assert first == [] and second == []
    assert poller.consecutive_failures("run-a") == 1
    assert poller.consecutive_failures("run-b") == 1

    pool.release("run-a")
    assert poller.consecutive_failures("run-a") == 0
    assert poller.consecutive_failures("run-b") == 1


@pytest.mark.asyncio
async def test_one_run_reaching_its_failure_limit_raises_for_that_run_only():
    poller = _poller(FakeMailbox(failures=5), failure_limit=2)

    await poller.search_for_verification_emails(instance_id="run-a")
    await poller.search_for_verification_emails(instance_id="run-b")
    with pytest.raises(MailConnectionError):
        await poller.search_for_verification_emails(instance_id="run-a")

    assert poller.consecutive_failures("run-b") == 1
