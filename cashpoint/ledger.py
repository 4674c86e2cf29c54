# cashpoint/ledger.py
from __future__ import annotations

import json
from decimal import Decimal
from typing import Optional, List, Dict, Any

from sqlalchemy import func, case, desc
from sqlalchemy.orm import Session

from cashpoint import models
from cashpoint.errors import InvalidRequest

FEES_ACCOUNTS = {
    "USD": "FEES-COLLECTED",
    "SYP": "FEES-COLLECTED-SYP",
}


def _to_decimal(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def _canonical_json(meta: Dict[str, Any]) -> str:
    # Deterministic JSON so substring marker queries are stable.
    return json.dumps(meta, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)


def fees_account_code(currency: str) -> str:
    return FEES_ACCOUNTS[currency.upper().strip()]


def create_entry(
    db: Session,
    *,
    direction: str,
    amount: Decimal,
    currency: str,
    reason: str,
    wallet_id: Optional[int] = None,
    account_code: Optional[str] = None,
    reference: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> models.LedgerEntry:
    """Journal one movement. The caller's unit of work commits it."""
    direction = direction.lower().strip()
    if direction not in ("in", "out"):
        raise ValueError("direction must be 'in' or 'out'")
    if (wallet_id is None) == (account_code is None):
        raise ValueError("exactly one of wallet_id / account_code is required")

    amt = _to_decimal(amount)
    if amt <= 0:
        raise ValueError("amount must be > 0")

    row = models.LedgerEntry(
        wallet_id=wallet_id,
        account_code=account_code,
        direction=direction,
        amount=amt,
        currency=currency.upper().strip(),
        reason=reason.strip(),
        reference=reference,
        meta=(_canonical_json(meta) if meta else None),
    )
    db.add(row)
    db.flush()
    return row


def credit_wallet(
    db: Session,
    wallet: models.Wallet,
    amount,
    *,
    reason: str,
    reference: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> models.LedgerEntry:
    amt = _to_decimal(amount)
    wallet.balance = _to_decimal(wallet.balance or 0) + amt
    db.add(wallet)
    return create_entry(
        db,
        wallet_id=wallet.id,
        direction="in",
        amount=amt,
        currency=wallet.currency,
        reason=reason,
        reference=reference,
        meta=meta,
    )


def debit_wallet(
    db: Session,
    wallet: models.Wallet,
    amount,
    *,
    reason: str,
    reference: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> models.LedgerEntry:
    amt = _to_decimal(amount)
    bal = _to_decimal(wallet.balance or 0)
    if bal < amt:
        raise InvalidRequest("Insufficient balance", available=float(bal), required=float(amt))
    wallet.balance = bal - amt
    db.add(wallet)
    return create_entry(
        db,
        wallet_id=wallet.id,
        direction="out",
        amount=amt,
        currency=wallet.currency,
        reason=reason,
        reference=reference,
        meta=meta,
    )


def get_or_create_account(db: Session, code: str, currency: str) -> models.InternalAccount:
    acc = (
        db.query(models.InternalAccount)
        .filter(models.InternalAccount.code == code)
        .with_for_update()
        .first()
    )
    if acc:
        return acc
    acc = models.InternalAccount(code=code, name=code.replace("-", " ").title(), currency=currency, balance=Decimal("0"))
    db.add(acc)
    db.flush()
    return acc


def post_to_account(
    db: Session,
    *,
    code: str,
    direction: str,
    amount,
    currency: str,
    reason: str,
    reference: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> models.InternalAccount:
    acc = get_or_create_account(db, code, currency)
    amt = _to_decimal(amount)
    bal = _to_decimal(acc.balance or 0)
    if direction == "out":
        if bal < amt:
            raise InvalidRequest("Insufficient account balance", account=code, available=float(bal))
        acc.balance = bal - amt
    else:
        acc.balance = bal + amt
    db.add(acc)
    create_entry(
        db,
        account_code=code,
        direction=direction,
        amount=amt,
        currency=currency,
        reason=reason,
        reference=reference,
        meta=meta,
    )
    return acc


def get_wallet_ledger_balance(db: Session, *, wallet_id: int) -> Decimal:
    """Recompute a wallet balance from its journal (reconciliation)."""
    signed_amount = case(
        (models.LedgerEntry.direction == "in", models.LedgerEntry.amount),
        else_=-models.LedgerEntry.amount,
    )

    total = (
        db.query(func.coalesce(func.sum(signed_amount), 0))
        .filter(models.LedgerEntry.wallet_id == wallet_id)
        .scalar()
    )
    return _to_decimal(total)


def get_statement(
    db: Session,
    *,
    wallet_id: int,
    limit: int = 10,
) -> List[models.LedgerEntry]:
    return (
        db.query(models.LedgerEntry)
        .filter(models.LedgerEntry.wallet_id == wallet_id)
        .order_by(desc(models.LedgerEntry.id))
        .limit(limit)
        .all()
    )
