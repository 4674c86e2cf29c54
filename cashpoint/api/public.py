# cashpoint/api/public.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cashpoint import crud
from cashpoint.api.deps import get_fee_settings
from cashpoint.database import get_db
from cashpoint.errors import InvalidRequest
from cashpoint.fees import FeeSettings, normalize_currency

router = APIRouter(prefix="/api", tags=["public"])


@router.get("/fees")
def fees(currency: str = Query("USD"), fee_settings: FeeSettings = Depends(get_fee_settings)):
    try:
        currency = normalize_currency(currency)
    except ValueError as e:
        raise InvalidRequest(str(e)) from e
    return fee_settings.public_view(currency)


def rates_view(db: Session) -> dict:
    rates = crud.get_active_rates(db)
    out = {}
    for key, rate_type in (("depositRate", "DEPOSIT"), ("withdrawRate", "WITHDRAW")):
        row = rates.get(rate_type)
        out[key] = float(row.rate) if row else None
    updated = [r.updated_at for r in rates.values() if r.updated_at is not None]
    out["updatedAt"] = max(updated).isoformat() if updated else None
    return out


@router.get("/exchange-rates")
def exchange_rates(db: Session = Depends(get_db)):
    return rates_view(db)
