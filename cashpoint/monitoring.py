# cashpoint/monitoring.py
from __future__ import annotations

import time
from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from cashpoint.core.config import settings
from cashpoint.database import SessionLocal


def _check(name: str, ok: bool, detail: str = "", extra: Dict[str, Any] | None = None) -> Dict[str, Any]:
    row: Dict[str, Any] = {"name": name, "ok": bool(ok)}
    if detail:
        row["detail"] = detail
    if extra:
        row["extra"] = extra
    return row


def run_selftest(quick: bool = True) -> dict:
    checks: List[Dict[str, Any]] = []

    # --- ENV sanity ---
    checks.append(_check("env:DATABASE_URL", bool(settings.DATABASE_URL)))
    checks.append(_check("env:SECRET_KEY", settings.SECRET_KEY != "change-me", detail="must not be the default"))

    # --- DB ---
    db_ok = False
    db_err = ""
    t0 = time.time()
    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            db_ok = True
        finally:
            db.close()
    except (SQLAlchemyError, RuntimeError) as e:
        db_err = repr(e)

    checks.append(_check("db:select1", db_ok, detail=db_err, extra={"ms": int((time.time() - t0) * 1000)}))

    status = "ok" if all(c.get("ok") for c in checks) else "degraded"
    result = {"status": status, "checks": checks}

    # optional features, reported without affecting status
    if not quick:
        result["info"] = {"push": "enabled" if settings.BOT_TOKEN else "disabled (BOT_TOKEN missing)"}
    return result
