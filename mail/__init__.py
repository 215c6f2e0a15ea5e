"""Verification email access."""

from mail.code_pool import VerificationCodePool
from mail.poller import VerificationMailPoller, extract_code

__all__ = ["VerificationCodePool", "VerificationMailPoller", "extract_code"]
