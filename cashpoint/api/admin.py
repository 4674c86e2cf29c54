# cashpoint/api/admin.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from pydantic.alias_generators import to_camel, to_snake
from sqlalchemy.orm import Session

from cashpoint import crud, models, profits, settlements
from cashpoint.api.deps import client_ip, get_fee_settings, require_admin
from cashpoint.api.public import rates_view
from cashpoint.database import get_db
from cashpoint.errors import InvalidRequest
from cashpoint.fees import FeeSettings, normalize_currency
from cashpoint.schemas import (
    AgentCashOut,
    AuditLogOut,
    ExchangeRatesIn,
    ProfitWithdrawalIn,
    ProfitWithdrawalOut,
    SettlementActionIn,
    SettlementOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


# -------- Settlements --------

@router.post("/settlements")
def settlement_action(
    body: SettlementActionIn,
    request: Request,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    row = settlements.apply_action(
        db,
        settlement_id=body.settlement_id,
        action=body.action,
        admin=admin,
        delivery_method=body.delivery_method,
        source_agent_id=body.source_agent_id,
        notes=body.notes,
        ip_address=client_ip(request),
    )
    db.commit()
    return {"success": True, "settlement": SettlementOut.model_validate(row).model_dump(by_alias=True)}


@router.get("/settlements/all")
def all_settlements(
    status: Optional[str] = Query(None),
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows = settlements.list_settlements(db, status=status)
    return {"settlements": [SettlementOut.model_validate(s).model_dump(by_alias=True) for s in rows]}


@router.get("/agents/with-cash")
def agents_with_cash(
    min_amount: float = Query(0, alias="minAmount", ge=0),
    currency: str = Query("USD"),
    exclude_agent_id: Optional[int] = Query(None, alias="excludeAgentId"),
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    try:
        currency = normalize_currency(currency)
    except ValueError as e:
        raise InvalidRequest(str(e)) from e
    rows = settlements.agents_with_cash(db, min_amount=min_amount, currency=currency, exclude_agent_id=exclude_agent_id)
    return {"agents": [AgentCashOut.model_validate(a).model_dump(by_alias=True) for a in rows]}


# -------- Exchange rates --------

@router.get("/exchange-rates")
def get_exchange_rates(admin: models.User = Depends(require_admin), db: Session = Depends(get_db)):
    return rates_view(db)


@router.post("/exchange-rates")
def set_exchange_rates(
    body: ExchangeRatesIn,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    crud.set_exchange_rates(db, deposit_rate=body.deposit_rate, withdraw_rate=body.withdraw_rate, admin_id=admin.id)
    db.commit()
    logger.info("Exchange rates updated by admin %s", admin.id)
    return {"success": True, **rates_view(db)}


# -------- Platform profits --------

def _withdrawal_out(row: models.ProfitWithdrawal) -> Dict[str, Any]:
    return ProfitWithdrawalOut.model_validate(row).model_dump(by_alias=True)


@router.get("/platform-profits")
def platform_profits(
    period: str = Query("all"),
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    stats = profits.profit_stats(db, period=period)
    stats["withdrawals"] = [_withdrawal_out(w) for w in stats["withdrawals"]]
    return stats


@router.post("/platform-profits")
def withdraw_profits(
    body: ProfitWithdrawalIn,
    request: Request,
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    bank = body.bank_details or {}
    row = profits.withdraw_profits(
        db,
        admin=admin,
        amount=body.amount,
        currency=body.currency,
        method=body.method,
        notes=body.notes,
        bank_name=bank.get("bankName"),
        account_number=bank.get("accountNumber"),
        iban=bank.get("iban"),
        phone=body.phone,
        wallet_type=body.wallet_type,
        ip_address=client_ip(request),
    )
    db.commit()
    return {"success": True, "withdrawal": _withdrawal_out(row)}


# -------- System settings --------

@router.get("/settings")
def get_settings(admin: models.User = Depends(require_admin), fee_settings: FeeSettings = Depends(get_fee_settings)):
    return {to_camel(k): float(v) for k, v in fee_settings.model_dump().items()}


@router.put("/settings")
def update_settings(
    changes: Dict[str, Any] = Body(...),
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    if not changes:
        raise InvalidRequest("No settings provided")
    snake = {to_snake(k): v for k, v in changes.items()}
    updated = crud.update_system_settings(db, changes=snake, admin_id=admin.id)
    db.commit()
    return {to_camel(k): float(v) for k, v in updated.model_dump().items()}


# -------- Audit --------

@router.get("/audit-logs")
def audit_logs(
    action: Optional[str] = Query(None),
    entity: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None, alias="userId"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    admin: models.User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    rows = crud.list_audit_logs(db, action=action, entity=entity, user_id=user_id, limit=limit, offset=offset)
    return {"logs": [AuditLogOut.model_validate(r).model_dump(by_alias=True) for r in rows]}
