# cashpoint/api/agents.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cashpoint import cashdesk, models, settlements
from cashpoint.api.deps import get_agent_profile, get_fee_settings, require_agent
from cashpoint.database import get_db
from cashpoint.fees import FeeSettings
from cashpoint.schemas import CashDeskIn, SettlementCreateIn, SettlementOut, TransactionOut

router = APIRouter(prefix="/api/agents", tags=["agents"])


@router.get("/settlements")
def my_settlements(agent: models.AgentProfile = Depends(get_agent_profile), db: Session = Depends(get_db)):
    rows = settlements.list_agent_settlements(db, agent_id=agent.id)
    return {
        "settlements": [SettlementOut.model_validate(s).model_dump(by_alias=True) for s in rows],
        "cashCollected": float(agent.cash_collected or 0),
        "cashCollectedSyp": float(agent.cash_collected_syp or 0),
        "currentCredit": float(agent.current_credit or 0),
        "currentCreditSyp": float(agent.current_credit_syp or 0),
    }


@router.post("/settlements", status_code=201)
def request_settlement(
    body: SettlementCreateIn,
    agent: models.AgentProfile = Depends(get_agent_profile),
    fee_settings: FeeSettings = Depends(get_fee_settings),
    db: Session = Depends(get_db),
):
    row = settlements.create_settlement(
        db,
        agent=agent,
        settlement_type=body.settlement_type,
        currency=body.currency,
        requested_amount=body.amount,
        notes=body.notes,
        fee_settings=fee_settings,
    )
    db.commit()
    return {"success": True, "settlement": SettlementOut.model_validate(row).model_dump(by_alias=True)}


@router.post("/deposit")
def deposit(
    body: CashDeskIn,
    user: models.User = Depends(require_agent),
    fee_settings: FeeSettings = Depends(get_fee_settings),
    db: Session = Depends(get_db),
):
    tx = cashdesk.process_deposit(
        db, agent_user=user, user_phone=body.user_phone, amount=body.amount,
        currency=body.currency, fee_settings=fee_settings,
    )
    db.commit()
    return {"success": True, "transaction": TransactionOut.model_validate(tx).model_dump(by_alias=True)}


@router.post("/withdraw")
def withdraw(
    body: CashDeskIn,
    user: models.User = Depends(require_agent),
    fee_settings: FeeSettings = Depends(get_fee_settings),
    db: Session = Depends(get_db),
):
    tx = cashdesk.process_withdrawal(
        db, agent_user=user, user_phone=body.user_phone, amount=body.amount,
        currency=body.currency, fee_settings=fee_settings,
    )
    db.commit()
    return {"success": True, "transaction": TransactionOut.model_validate(tx).model_dump(by_alias=True)}
