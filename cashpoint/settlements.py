# cashpoint/settlements.py
"""Agent settlements: cash <-> credit reconciliation between agents and the platform.

Three request types, all created PENDING by an agent and resolved by an admin:

* CASH_TO_CREDIT  agent hands collected cash over and gets float back, minus
                  the platform and agent commission shares.
* CREDIT_REQUEST  agent asks for extra float; the same amount stays due in cash.
* CASH_REQUEST    agent asks for physical cash against float. Approval picks a
                  delivery method; a separate confirm_delivery step books the
                  cash once it has physically moved.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from cashpoint import crud, ledger, models
from cashpoint.errors import Conflict, InvalidRequest, NotFound
from cashpoint.fees import FeeSettings, normalize_currency, quantize_money
from cashpoint.notifications import notify, notify_admins
from cashpoint.security import generate_reference_number

logger = logging.getLogger(__name__)

SETTLEMENT_TYPES = ("CASH_TO_CREDIT", "CREDIT_REQUEST", "CASH_REQUEST")
DELIVERY_METHODS = ("FROM_PLATFORM", "FROM_ADMIN", "FROM_AGENT")
ACTIONS = ("approve", "reject", "confirm_delivery")


def _d(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CashToCreditBreakdown:
    cash_collected: Decimal
    platform_share: Decimal
    agent_share: Decimal
    amount_due: Decimal


def compute_cash_to_credit(cash, currency: str, fee_settings: FeeSettings) -> CashToCreditBreakdown:
    """Split handed-over cash; amount_due = cash - platform_share - agent_share."""
    cash = _d(cash)
    platform_share = quantize_money(cash * fee_settings.settlement_platform_commission / Decimal("100"), currency)
    agent_share = quantize_money(cash * fee_settings.settlement_agent_commission / Decimal("100"), currency)
    return CashToCreditBreakdown(
        cash_collected=cash,
        platform_share=platform_share,
        agent_share=agent_share,
        amount_due=cash - platform_share - agent_share,
    )


# -------- agent side --------

def create_settlement(
    db: Session,
    *,
    agent: models.AgentProfile,
    settlement_type: str = "CASH_TO_CREDIT",
    currency: str = "USD",
    requested_amount=None,
    notes: Optional[str] = None,
    fee_settings: FeeSettings,
) -> models.Settlement:
    settlement_type = (settlement_type or "CASH_TO_CREDIT").upper().strip()
    if settlement_type not in SETTLEMENT_TYPES:
        raise InvalidRequest(f"Unknown settlement type: {settlement_type}")
    try:
        currency = normalize_currency(currency)
    except ValueError as e:
        raise InvalidRequest(str(e)) from e

    agent = crud.get_agent_profile(db, agent.id, for_update=True)
    pending = (
        db.query(models.Settlement.id)
        .filter(models.Settlement.agent_id == agent.id, models.Settlement.status == "PENDING")
        .first()
    )
    if pending:
        raise InvalidRequest("You already have a pending settlement request")

    requested = None if requested_amount is None else _d(requested_amount)
    if requested is not None and requested <= 0:
        raise InvalidRequest("Amount must be positive")

    row = models.Settlement(
        settlement_number=generate_reference_number("STL"),
        agent_id=agent.id,
        settlement_type=settlement_type,
        currency=currency,
        status="PENDING",
        notes=notes or None,
    )

    if settlement_type == "CASH_TO_CREDIT":
        cash = available_cash(db, agent, currency)
        if cash <= 0:
            raise InvalidRequest("No cash available for settlement")
        if requested is None:
            requested = cash
        if requested > cash:
            raise InvalidRequest("Requested amount exceeds collected cash", available=float(cash))
        b = compute_cash_to_credit(requested, currency, fee_settings)
        row.requested_amount = requested
        row.cash_collected = b.cash_collected
        row.platform_share = b.platform_share
        row.agent_share = b.agent_share
        row.amount_due = b.amount_due
        row.credit_given = b.amount_due

    elif settlement_type == "CREDIT_REQUEST":
        if requested is None:
            raise InvalidRequest("Amount is required")
        row.requested_amount = requested
        row.credit_given = requested
        row.amount_due = requested

    else:
        if requested is None:
            raise InvalidRequest("Amount is required")
        if crud.agent_credit(agent, currency) < requested:
            raise InvalidRequest("Insufficient credit for cash request", available=float(crud.agent_credit(agent, currency)))
        row.requested_amount = requested
        row.cash_to_receive = requested
        row.credit_deducted = requested

    db.add(row)
    db.flush()

    notify_admins(
        db,
        title="New Settlement Request",
        message=(
            f"Agent {agent.business_name} requested {settlement_type} "
            f"{quantize_money(requested, currency)} {currency}" + (f"\nNote: {notes}" if notes else "")
        ),
        meta={"settlementId": row.id},
    )
    logger.info("Settlement %s created (%s, agent=%s)", row.settlement_number, settlement_type, agent.agent_code)
    return row


def list_agent_settlements(db: Session, *, agent_id: int, limit: int = 20) -> List[models.Settlement]:
    return (
        db.query(models.Settlement)
        .filter(models.Settlement.agent_id == agent_id)
        .order_by(models.Settlement.id.desc())
        .limit(limit)
        .all()
    )


# -------- admin side --------

def list_settlements(db: Session, *, status: Optional[str] = None, limit: int = 200) -> List[models.Settlement]:
    q = db.query(models.Settlement).order_by(models.Settlement.id.desc())
    if status:
        q = q.filter(models.Settlement.status == status.upper())
    return q.limit(limit).all()


def agents_with_cash(
    db: Session,
    *,
    min_amount=0,
    currency: str = "USD",
    exclude_agent_id: Optional[int] = None,
    limit: int = 20,
) -> List[models.AgentProfile]:
    """Active agents with at least ``min_amount`` uncommitted cash, richest first."""
    currency = normalize_currency(currency)
    minimum = _d(min_amount)
    cash_col = models.AgentProfile.cash_collected_syp if currency == "SYP" else models.AgentProfile.cash_collected
    q = db.query(models.AgentProfile).filter(
        models.AgentProfile.is_active.is_(True),
        cash_col >= minimum,
    )
    if exclude_agent_id is not None:
        q = q.filter(models.AgentProfile.id != exclude_agent_id)

    rows = []
    for agent in q.order_by(cash_col.desc()).all():
        if available_cash(db, agent, currency) >= minimum:
            rows.append(agent)
            if len(rows) >= limit:
                break
    return rows


def committed_cash(db: Session, *, source_agent_id: int, currency: str) -> Decimal:
    """Cash an agent has been assigned to deliver but has not handed over yet."""
    total = (
        db.query(func.coalesce(func.sum(models.Settlement.cash_to_receive), 0))
        .filter(
            models.Settlement.source_agent_id == source_agent_id,
            models.Settlement.currency == currency,
            models.Settlement.status == "APPROVED",
            models.Settlement.delivery_status == "PENDING",
        )
        .scalar()
    )
    return _d(total or 0)


def available_cash(db: Session, agent: models.AgentProfile, currency: str) -> Decimal:
    return crud.agent_cash(agent, currency) - committed_cash(db, source_agent_id=agent.id, currency=currency)


def _lock_agents(db: Session, *agent_ids: int) -> dict:
    locked = {}
    for aid in sorted(set(a for a in agent_ids if a is not None)):
        agent = crud.get_agent_profile(db, aid, for_update=True)
        if agent is None:
            raise NotFound("Agent not found")
        locked[aid] = agent
    return locked


def _approve_cash_to_credit(db: Session, s: models.Settlement, agent: models.AgentProfile, now: datetime) -> None:
    currency = s.currency
    crud.adjust_agent_cash(agent, currency, -_d(s.cash_collected))
    crud.adjust_agent_credit(agent, currency, _d(s.credit_given))

    ref = s.settlement_number
    if _d(s.agent_share) > 0:
        wallet = crud.get_or_create_wallet(db, agent.user_id, currency, "BUSINESS")
        ledger.credit_wallet(db, wallet, s.agent_share, reason="settlement_commission", reference=ref)
    if _d(s.platform_share) > 0:
        ledger.post_to_account(
            db,
            code=ledger.fees_account_code(currency),
            direction="in",
            amount=s.platform_share,
            currency=currency,
            reason="settlement_commission",
            reference=ref,
        )

    db.add(
        models.Transaction(
            reference_number=generate_reference_number("SET"),
            tx_type="SETTLEMENT",
            status="COMPLETED",
            sender_id=agent.user_id,
            agent_id=agent.user_id,
            amount=_d(s.cash_collected),
            fee=_d(s.platform_share) + _d(s.agent_share),
            platform_fee=_d(s.platform_share),
            agent_fee=_d(s.agent_share),
            net_amount=_d(s.amount_due),
            currency=currency,
            description=f"Settlement {ref}",
            completed_at=now,
        )
    )
    s.status = "COMPLETED"
    s.completed_at = now


def _approve_cash_request(
    db: Session,
    s: models.Settlement,
    agent: models.AgentProfile,
    *,
    delivery_method: Optional[str],
    source_agent_id: Optional[int],
) -> None:
    method = (delivery_method or "").upper().strip()
    if not method:
        raise InvalidRequest("deliveryMethod is required to approve a cash request")
    if method not in DELIVERY_METHODS:
        raise InvalidRequest(f"Unknown delivery method: {delivery_method}")

    if method == "FROM_AGENT":
        if source_agent_id is None:
            raise InvalidRequest("sourceAgentId is required when delivering from an agent")
        if source_agent_id == agent.id:
            raise InvalidRequest("Source agent must differ from the requesting agent")
        source = crud.get_agent_profile(db, source_agent_id, for_update=True)
        if source is None or not source.is_active:
            raise NotFound("Source agent not found")
        available = available_cash(db, source, s.currency)
        if available < _d(s.cash_to_receive):
            raise InvalidRequest("Source agent has insufficient cash", available=float(available))
        s.source_agent_id = source.id
    else:
        s.source_agent_id = None

    crud.adjust_agent_credit(agent, s.currency, -_d(s.credit_deducted))
    s.delivery_method = method
    s.delivery_status = "PENDING"
    s.status = "APPROVED"


def _confirm_delivery(db: Session, s: models.Settlement, now: datetime) -> None:
    if s.settlement_type != "CASH_REQUEST":
        raise InvalidRequest("Only cash requests have a delivery to confirm")
    if s.status != "APPROVED" or s.delivery_status != "PENDING":
        raise Conflict("Settlement has no pending delivery")

    locked = _lock_agents(db, s.agent_id, s.source_agent_id)
    agent = locked[s.agent_id]
    amount = _d(s.cash_to_receive)

    if s.delivery_method == "FROM_AGENT":
        source = locked[s.source_agent_id]
        crud.adjust_agent_cash(source, s.currency, -amount)
        crud.adjust_agent_credit(source, s.currency, amount)
    crud.adjust_agent_cash(agent, s.currency, amount)

    s.delivery_status = "CONFIRMED"
    s.delivered_at = now
    s.status = "COMPLETED"
    s.completed_at = now


def _is_undelivered_cash_request(s: models.Settlement) -> bool:
    return s.settlement_type == "CASH_REQUEST" and s.status == "APPROVED" and s.delivery_status == "PENDING"


def _cancel_cash_request(db: Session, s: models.Settlement, now: datetime) -> None:
    """Call off an approved delivery that never happened; the float goes back."""
    agent = _lock_agents(db, s.agent_id)[s.agent_id]
    crud.adjust_agent_credit(agent, s.currency, _d(s.credit_deducted))
    s.delivery_status = "CANCELLED"
    s.status = "REJECTED"
    s.completed_at = now


def apply_action(
    db: Session,
    *,
    settlement_id: int,
    action: str,
    admin: models.User,
    delivery_method: Optional[str] = None,
    source_agent_id: Optional[int] = None,
    notes: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> models.Settlement:
    """Admin transition: approve / reject / confirm_delivery."""
    action = (action or "").lower().strip()
    if action not in ACTIONS:
        raise InvalidRequest(f"Unknown action: {action}")

    s = db.query(models.Settlement).filter(models.Settlement.id == settlement_id).with_for_update().first()
    if s is None:
        raise NotFound("Settlement not found")

    now = _utcnow()

    try:
        if action == "confirm_delivery":
            _confirm_delivery(db, s, now)
        elif action == "reject" and _is_undelivered_cash_request(s):
            _cancel_cash_request(db, s, now)
            s.reviewed_by = admin.id
            s.reviewed_at = now
        else:
            if s.status != "PENDING":
                raise Conflict(f"Settlement is already {s.status.lower()}")
            agent = _lock_agents(db, s.agent_id)[s.agent_id]

            if action == "reject":
                s.status = "REJECTED"
            elif s.settlement_type == "CASH_TO_CREDIT":
                _approve_cash_to_credit(db, s, agent, now)
            elif s.settlement_type == "CREDIT_REQUEST":
                crud.adjust_agent_credit(agent, s.currency, _d(s.credit_given))
                s.status = "APPROVED"
            else:
                _approve_cash_request(db, s, agent, delivery_method=delivery_method, source_agent_id=source_agent_id)

            s.reviewed_by = admin.id
            s.reviewed_at = now

        if notes:
            s.admin_notes = notes
        db.add(s)
        db.flush()
    except StaleDataError as e:
        raise Conflict("Settlement was modified by another admin, reload and retry") from e

    crud.audit(
        db,
        user_id=admin.id,
        action=f"SETTLEMENT_{action.upper()}",
        entity="Settlement",
        entity_id=s.id,
        new_value={
            "status": s.status,
            "deliveryMethod": s.delivery_method,
            "sourceAgentId": s.source_agent_id,
            "notes": notes,
        },
        ip_address=ip_address,
    )

    agent_user = s.agent.user
    titles = {
        "approve": "Settlement Approved",
        "reject": "Settlement Rejected",
        "confirm_delivery": "Cash Delivery Confirmed",
    }
    notify(
        db,
        agent_user,
        title=titles[action],
        message=f"Settlement {s.settlement_number} is now {s.status.lower()}",
        meta={"settlementId": s.id},
    )
    if s.source_agent is not None:
        shown = f"{quantize_money(s.cash_to_receive, s.currency)} {s.currency}"
        if s.delivery_status == "CANCELLED":
            title, message = "Cash Delivery Cancelled", f"Delivery of {shown} for {s.settlement_number} is off"
        else:
            title = "Cash Delivery Assigned" if action == "approve" else "Cash Delivery Confirmed"
            message = f"Deliver {shown} to {s.agent.business_name} ({s.settlement_number})"
        notify(db, s.source_agent.user, title=title, message=message, meta={"settlementId": s.id})

    logger.info("Settlement %s %s by admin %s -> %s", s.settlement_number, action, admin.id, s.status)
    return s
