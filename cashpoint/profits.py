# cashpoint/profits.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from cashpoint import crud, ledger, models
from cashpoint.errors import InvalidRequest, NotFound
from cashpoint.fees import CURRENCIES, normalize_currency, quantize_money
from cashpoint.notifications import notify
from cashpoint.security import generate_reference_number, sanitize_phone

logger = logging.getLogger(__name__)

WITHDRAWAL_METHODS = ("BANK_TRANSFER", "CASH", "CRYPTO", "USER_WALLET")
PERIODS = ("today", "week", "month", "year", "all")


def _d(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def period_start(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    now = now or datetime.now(timezone.utc)
    if period == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if period == "year":
        return now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return None


def available_balance(db: Session, currency: str) -> Decimal:
    acc = (
        db.query(models.InternalAccount)
        .filter(models.InternalAccount.code == ledger.fees_account_code(currency))
        .first()
    )
    return _d(acc.balance) if acc else Decimal("0")


def profit_stats(db: Session, *, period: str = "all", now: Optional[datetime] = None) -> Dict[str, Any]:
    if period not in PERIODS:
        raise InvalidRequest(f"Unknown period: {period}")
    start = period_start(period, now)

    base = db.query(models.Transaction).filter(
        models.Transaction.status == "COMPLETED",
        models.Transaction.platform_fee > 0,
    )
    if start is not None:
        base = base.filter(models.Transaction.created_at >= start)

    period_stats: Dict[str, Any] = {}
    for cur in CURRENCIES:
        total, count = (
            base.filter(models.Transaction.currency == cur)
            .with_entities(func.coalesce(func.sum(models.Transaction.platform_fee), 0), func.count(models.Transaction.id))
            .one()
        )
        period_stats[f"fees{cur}"] = float(total)
        period_stats[f"transactions{cur}"] = int(count)

    by_type = (
        base.with_entities(
            models.Transaction.tx_type,
            models.Transaction.currency,
            func.coalesce(func.sum(models.Transaction.platform_fee), 0),
            func.count(models.Transaction.id),
        )
        .group_by(models.Transaction.tx_type, models.Transaction.currency)
        .all()
    )

    withdrawn = dict(
        db.query(models.ProfitWithdrawal.currency, func.coalesce(func.sum(models.ProfitWithdrawal.amount), 0))
        .filter(models.ProfitWithdrawal.status == "COMPLETED")
        .group_by(models.ProfitWithdrawal.currency)
        .all()
    )

    recent = db.query(models.ProfitWithdrawal).order_by(models.ProfitWithdrawal.id.desc()).limit(20).all()

    return {
        "availableBalance": {cur: float(available_balance(db, cur)) for cur in CURRENCIES},
        "periodStats": period_stats,
        "feesByType": [
            {"type": t, "currency": c, "total": float(total), "count": int(count)}
            for t, c, total, count in by_type
        ],
        "totalWithdrawn": {cur: float(withdrawn.get(cur, 0)) for cur in CURRENCIES},
        "withdrawals": recent,
    }


def withdraw_profits(
    db: Session,
    *,
    admin: models.User,
    amount,
    currency: str,
    method: str,
    notes: Optional[str] = None,
    bank_name: Optional[str] = None,
    account_number: Optional[str] = None,
    iban: Optional[str] = None,
    phone: Optional[str] = None,
    wallet_type: str = "PERSONAL",
    ip_address: Optional[str] = None,
) -> models.ProfitWithdrawal:
    """Take collected fees out of the platform: to an external payee or into a user's wallet."""
    amt = _d(amount)
    if amt <= 0:
        raise InvalidRequest("Amount must be positive")
    try:
        currency = normalize_currency(currency)
    except ValueError as e:
        raise InvalidRequest(str(e)) from e
    method = (method or "").upper().strip()
    if method not in WITHDRAWAL_METHODS:
        raise InvalidRequest(f"Unknown withdrawal method: {method}")

    code = ledger.fees_account_code(currency)
    if available_balance(db, currency) < amt:
        raise InvalidRequest("Insufficient profit balance", available=float(available_balance(db, currency)))

    ref = generate_reference_number("PWD")
    now = datetime.now(timezone.utc)
    recipient: Optional[models.User] = None

    if method == "USER_WALLET":
        if not phone:
            raise InvalidRequest("Phone number is required for wallet transfers")
        phone = sanitize_phone(phone)
        recipient = crud.get_user_by_phone(db, phone)
        if recipient is None:
            raise NotFound("No user with this phone number")
        wallet = crud.get_wallet(db, recipient.id, currency, wallet_type, for_update=True)
        if wallet is None:
            raise NotFound(f"User has no {currency} wallet")

        ledger.post_to_account(db, code=code, direction="out", amount=amt, currency=currency,
                               reason="profit_distribution", reference=ref)
        ledger.credit_wallet(db, wallet, amt, reason="profit_distribution", reference=ref)
        db.add(
            models.Transaction(
                reference_number=ref,
                tx_type="PROFIT_DISTRIBUTION",
                status="COMPLETED",
                receiver_id=recipient.id,
                amount=amt,
                net_amount=amt,
                currency=currency,
                description="Platform profit distribution",
                completed_at=now,
            )
        )
        account_number = phone
        notes = notes or f"Transfer to {recipient.full_name}"
    else:
        ledger.post_to_account(db, code=code, direction="out", amount=amt, currency=currency,
                               reason="profit_withdrawal", reference=ref, meta={"method": method})

    row = models.ProfitWithdrawal(
        reference_number=ref,
        admin_id=admin.id,
        amount=amt,
        currency=currency,
        method=method,
        bank_name=bank_name,
        account_number=account_number,
        iban=iban,
        notes=notes,
        status="COMPLETED",
        completed_at=now,
    )
    db.add(row)
    db.flush()

    if recipient is not None:
        notify(
            db,
            recipient,
            title="Profit Distribution Received",
            message=f"You received {quantize_money(amt, currency)} {currency} from platform profits",
            ntype="TRANSACTION",
        )

    crud.audit(
        db,
        user_id=admin.id,
        action="PROFIT_WITHDRAWAL",
        entity="ProfitWithdrawal",
        entity_id=ref,
        new_value={
            "amount": amt,
            "currency": currency,
            "method": method,
            "phone": phone,
            "recipientName": recipient.full_name if recipient else None,
        },
        ip_address=ip_address,
    )
    logger.info("Profit withdrawal %s: %s %s via %s", ref, amt, currency, method)
    return row
