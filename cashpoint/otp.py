# cashpoint/otp.py
from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from cashpoint.security import check_secret, hash_secret

OTP_LENGTH = 6


def generate_otp() -> str:
    """Random OTP_LENGTH-digit code, never starting with 0."""
    low = 10 ** (OTP_LENGTH - 1)
    return str(secrets.randbelow(9 * low) + low)


def hash_otp(otp: str) -> str:
    return hash_secret(otp)


def verify_otp(otp: str, otp_hash: str) -> bool:
    return check_secret(otp, otp_hash)


def otp_expiry(seconds: int, now: datetime | None = None) -> datetime:
    return (now or datetime.now(timezone.utc)) + timedelta(seconds=seconds)


def is_otp_expired(expires_at: datetime, now: datetime | None = None) -> bool:
    # some backends (sqlite) hand timestamps back without tzinfo; they are stored as UTC
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return (now or datetime.now(timezone.utc)) > expires_at
