# cashpoint/security.py
from __future__ import annotations

import re
import secrets
import string
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import bcrypt
import jwt

from cashpoint.core.config import settings

JWT_ALGORITHM = "HS256"
MAX_AMOUNT = Decimal("100000000")

_B36 = string.digits + string.ascii_uppercase


def hash_secret(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_secret(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def create_access_token(user_id: int, user_type: str, minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "userType": user_type,
        "iat": now,
        "exp": now + timedelta(minutes=minutes or settings.ACCESS_TOKEN_MINUTES),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_access_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None


def _base36(n: int) -> str:
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = _B36[r] + out
    return out or "0"


def generate_reference_number(prefix: str = "TX") -> str:
    """PREFIX + base36(ms timestamp) + 4 random digits, e.g. TRFM4X1Q2ZK4821."""
    return f"{prefix}{_base36(int(time.time() * 1000))}{secrets.randbelow(9000) + 1000}"


def sanitize_phone(phone: str) -> str:
    cleaned = re.sub(r"\D", "", phone or "")
    cc = settings.DEFAULT_COUNTRY_CODE

    if cleaned.startswith(cc):
        return "+" + cleaned
    if cleaned.startswith("0"):
        return f"+{cc}{cleaned[1:]}"
    if len(cleaned) == 9:
        return f"+{cc}{cleaned}"
    return "+" + cleaned


def validate_amount(amount) -> bool:
    try:
        amt = Decimal(str(amount))
    except ArithmeticError:
        return False
    return amt.is_finite() and Decimal("0") < amt <= MAX_AMOUNT
