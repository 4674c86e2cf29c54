# cashpoint/crud.py
from __future__ import annotations

import json
import secrets
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from cashpoint import models
from cashpoint.errors import Conflict, InvalidRequest
from cashpoint.fees import CURRENCIES, FeeSettings, load_fee_settings
from cashpoint.security import hash_secret, sanitize_phone


def _d(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


# -------- Users --------

def get_user(db: Session, user_id: int) -> models.User | None:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_phone(db: Session, phone: str) -> models.User | None:
    return db.query(models.User).filter(models.User.phone == sanitize_phone(phone)).first()


def create_user(
    db: Session,
    *,
    phone: str,
    full_name: str,
    password: str,
    user_type: str = "USER",
    telegram_chat_id: int | None = None,
) -> models.User:
    phone = sanitize_phone(phone)
    if get_user_by_phone(db, phone):
        raise Conflict("Phone number already registered")

    user = models.User(
        phone=phone,
        full_name=full_name.strip(),
        user_type=user_type,
        password_hash=hash_secret(password),
        is_active=True,
        telegram_chat_id=telegram_chat_id,
    )
    db.add(user)
    db.flush()

    # every account holds one personal wallet per currency
    for currency in CURRENCIES:
        get_or_create_wallet(db, user.id, currency)
    return user


# -------- Wallets --------

def get_wallet(
    db: Session,
    user_id: int,
    currency: str,
    wallet_type: str = "PERSONAL",
    *,
    for_update: bool = False,
) -> models.Wallet | None:
    q = db.query(models.Wallet).filter(
        models.Wallet.user_id == user_id,
        models.Wallet.currency == currency,
        models.Wallet.wallet_type == wallet_type,
    )
    if for_update:
        q = q.with_for_update()
    return q.first()


def get_or_create_wallet(db: Session, user_id: int, currency: str, wallet_type: str = "PERSONAL") -> models.Wallet:
    w = get_wallet(db, user_id, currency, wallet_type)
    if w:
        return w
    w = models.Wallet(user_id=user_id, currency=currency, wallet_type=wallet_type, balance=Decimal("0"))
    db.add(w)
    db.flush()
    return w


def lock_wallets(db: Session, keys: List[tuple]) -> Dict[tuple, models.Wallet]:
    """Lock (user_id, currency, wallet_type) wallets in a stable order to avoid deadlocks."""
    locked: Dict[tuple, models.Wallet] = {}
    for key in sorted(set(keys)):
        w = get_wallet(db, key[0], key[1], key[2], for_update=True)
        if w is not None:
            locked[key] = w
    return locked


# -------- Agents --------

def get_agent_profile(db: Session, agent_id: int, *, for_update: bool = False) -> models.AgentProfile | None:
    q = db.query(models.AgentProfile).filter(models.AgentProfile.id == agent_id)
    if for_update:
        q = q.with_for_update()
    return q.first()


def get_agent_by_user(db: Session, user_id: int, *, for_update: bool = False) -> models.AgentProfile | None:
    q = db.query(models.AgentProfile).filter(models.AgentProfile.user_id == user_id)
    if for_update:
        q = q.with_for_update()
    return q.first()


def create_agent(
    db: Session,
    *,
    phone: str,
    full_name: str,
    password: str,
    business_name: str,
    agent_code: str | None = None,
    credit: Decimal = Decimal("0"),
    credit_syp: Decimal = Decimal("0"),
) -> models.AgentProfile:
    user = create_user(db, phone=phone, full_name=full_name, password=password, user_type="AGENT")
    for currency in CURRENCIES:
        get_or_create_wallet(db, user.id, currency, "BUSINESS")

    profile = models.AgentProfile(
        user_id=user.id,
        agent_code=agent_code or f"AG{secrets.randbelow(900000) + 100000}",
        business_name=business_name,
        current_credit=_d(credit),
        current_credit_syp=_d(credit_syp),
        cash_collected=Decimal("0"),
        cash_collected_syp=Decimal("0"),
        total_deposits=Decimal("0"),
        total_withdrawals=Decimal("0"),
        is_active=True,
    )
    db.add(profile)
    db.flush()
    return profile


def agent_cash(agent: models.AgentProfile, currency: str) -> Decimal:
    return _d((agent.cash_collected_syp if currency == "SYP" else agent.cash_collected) or 0)


def agent_credit(agent: models.AgentProfile, currency: str) -> Decimal:
    return _d((agent.current_credit_syp if currency == "SYP" else agent.current_credit) or 0)


def adjust_agent_cash(agent: models.AgentProfile, currency: str, delta) -> None:
    value = agent_cash(agent, currency) + _d(delta)
    if value < 0:
        raise InvalidRequest("Agent has insufficient cash", agentCode=agent.agent_code)
    if currency == "SYP":
        agent.cash_collected_syp = value
    else:
        agent.cash_collected = value


def adjust_agent_credit(agent: models.AgentProfile, currency: str, delta) -> None:
    value = agent_credit(agent, currency) + _d(delta)
    if value < 0:
        raise InvalidRequest("Agent has insufficient credit", agentCode=agent.agent_code)
    if currency == "SYP":
        agent.current_credit_syp = value
    else:
        agent.current_credit = value


# -------- Audit --------

def audit(
    db: Session,
    *,
    user_id: int | None,
    action: str,
    entity: str,
    entity_id: Any = None,
    new_value: Optional[Dict[str, Any]] = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> models.AuditLog:
    row = models.AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=(None if entity_id is None else str(entity_id)),
        new_value=(json.dumps(new_value, sort_keys=True, default=str) if new_value else None),
        ip_address=ip_address,
        user_agent=(user_agent[:256] if user_agent else None),
    )
    db.add(row)
    return row


def list_audit_logs(
    db: Session,
    *,
    action: str | None = None,
    entity: str | None = None,
    user_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> List[models.AuditLog]:
    q = db.query(models.AuditLog).order_by(models.AuditLog.id.desc())
    if action:
        q = q.filter(models.AuditLog.action == action)
    if entity:
        q = q.filter(models.AuditLog.entity == entity)
    if user_id is not None:
        q = q.filter(models.AuditLog.user_id == user_id)
    return q.offset(offset).limit(limit).all()


# -------- Exchange rates --------

def get_active_rates(db: Session) -> Dict[str, models.ExchangeRate]:
    rows = (
        db.query(models.ExchangeRate)
        .filter(models.ExchangeRate.is_active.is_(True))
        .order_by(models.ExchangeRate.rate_type.asc())
        .all()
    )
    return {r.rate_type: r for r in rows}


def set_exchange_rates(db: Session, *, deposit_rate, withdraw_rate, admin_id: int) -> List[models.ExchangeRate]:
    deposit_rate, withdraw_rate = _d(deposit_rate), _d(withdraw_rate)
    if deposit_rate <= 0 or withdraw_rate <= 0:
        raise InvalidRequest("Invalid rates provided")

    db.query(models.ExchangeRate).filter(models.ExchangeRate.is_active.is_(True)).update(
        {models.ExchangeRate.is_active: False}, synchronize_session=False
    )
    rows = [
        models.ExchangeRate(rate_type="DEPOSIT", rate=deposit_rate, is_active=True, updated_by=admin_id),
        models.ExchangeRate(rate_type="WITHDRAW", rate=withdraw_rate, is_active=True, updated_by=admin_id),
    ]
    db.add_all(rows)
    db.flush()
    audit(
        db,
        user_id=admin_id,
        action="EXCHANGE_RATES_UPDATED",
        entity="ExchangeRate",
        new_value={"depositRate": deposit_rate, "withdrawRate": withdraw_rate},
    )
    return rows


# -------- System settings --------

def get_or_create_system_settings(db: Session) -> models.SystemSettings:
    row = db.query(models.SystemSettings).order_by(models.SystemSettings.id.asc()).first()
    if row:
        return row
    row = models.SystemSettings()
    db.add(row)
    db.flush()
    return row


def _setting_value(key: str, value: Any) -> Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, str, Decimal)):
        raise InvalidRequest(f"Invalid value for {key}")
    try:
        d = _d(value)
    except ArithmeticError as e:
        raise InvalidRequest(f"Invalid value for {key}") from e
    if not d.is_finite():
        raise InvalidRequest(f"Invalid value for {key}")
    if d < 0:
        raise InvalidRequest(f"{key} must not be negative")
    if ("percent" in key or "commission" in key) and d > 100:
        raise InvalidRequest(f"{key} must not exceed 100")
    return d


def update_system_settings(db: Session, *, changes: Dict[str, Any], admin_id: int) -> FeeSettings:
    unknown = set(changes) - set(FeeSettings.model_fields)
    if unknown:
        raise InvalidRequest(f"Unknown settings: {', '.join(sorted(unknown))}")
    values = {key: _setting_value(key, value) for key, value in changes.items()}

    merged = load_fee_settings(db).model_dump()
    merged.update(values)
    if merged["settlement_platform_commission"] + merged["settlement_agent_commission"] > 100:
        raise InvalidRequest("Settlement commissions must not exceed 100 in total")
    if merged["min_transaction_amount"] > merged["max_transaction_amount"]:
        raise InvalidRequest("Minimum transaction amount must not exceed the maximum")

    row = get_or_create_system_settings(db)
    for key, value in values.items():
        setattr(row, key, value)
    row.updated_by = admin_id
    db.add(row)
    db.flush()

    audit(db, user_id=admin_id, action="SETTINGS_UPDATED", entity="SystemSettings", entity_id=row.id, new_value=changes)
    return load_fee_settings(db)
