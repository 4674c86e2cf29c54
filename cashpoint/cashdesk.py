# cashpoint/cashdesk.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from cashpoint import crud, ledger, models
from cashpoint.errors import InvalidRequest, NotFound
from cashpoint.fees import Commission, FeeSettings, calculate_commission, normalize_currency
from cashpoint.notifications import notify
from cashpoint.security import generate_reference_number, validate_amount

logger = logging.getLogger(__name__)


def _d(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def _prepare(db: Session, agent_user: models.User, user_phone: str, amount, currency: str, fee_settings: FeeSettings):
    amt = _d(amount)
    if not validate_amount(amt):
        raise InvalidRequest("Amount must be positive")
    if amt < fee_settings.min_transaction_amount:
        raise InvalidRequest(f"Minimum transaction amount is {fee_settings.min_transaction_amount}")
    if amt > fee_settings.max_transaction_amount:
        raise InvalidRequest(f"Maximum transaction amount is {fee_settings.max_transaction_amount}")
    try:
        currency = normalize_currency(currency)
    except ValueError as e:
        raise InvalidRequest(str(e)) from e

    agent = crud.get_agent_by_user(db, agent_user.id, for_update=True)
    if agent is None or not agent.is_active:
        raise NotFound("Agent not found or not registered")

    customer = crud.get_user_by_phone(db, user_phone)
    if customer is None or not customer.is_active:
        raise NotFound("User not found")
    if customer.id == agent_user.id:
        raise InvalidRequest("Agents cannot serve themselves")

    wallet = crud.get_wallet(db, customer.id, currency, for_update=True)
    if wallet is None:
        raise NotFound(f"User has no {currency} wallet")
    return amt, currency, agent, customer, wallet


def process_deposit(
    db: Session,
    *,
    agent_user: models.User,
    user_phone: str,
    amount,
    currency: str = "USD",
    fee_settings: FeeSettings,
) -> models.Transaction:
    """Customer hands cash to the agent and receives digital balance.

    user wallet +net, agent credit -amount, agent cash +amount.
    """
    amt, currency, agent, customer, wallet = _prepare(db, agent_user, user_phone, amount, currency, fee_settings)

    if crud.agent_credit(agent, currency) < amt:
        raise InvalidRequest(
            "Insufficient credit",
            available=float(crud.agent_credit(agent, currency)),
        )

    c = _commission(amt, "DEPOSIT", currency, fee_settings)
    ref = generate_reference_number("DEP")

    crud.adjust_agent_credit(agent, currency, -amt)
    crud.adjust_agent_cash(agent, currency, amt)
    agent.total_deposits = _d(agent.total_deposits or 0) + amt

    ledger.credit_wallet(db, wallet, c.net_amount, reason="deposit", reference=ref, meta={"agent": agent.agent_code})
    _book_fees(db, agent, currency, c, ref)

    tx = _record(db, "DEPOSIT", ref, agent_user.id, customer.id, agent_user.id, amt, currency, c,
                 f"Deposit at {agent.business_name}")
    notify(db, customer, title="Deposit Received", message=f"{c.net_amount} {currency} added to your wallet",
           ntype="TRANSACTION", meta={"transactionId": tx.id})
    return tx


def process_withdrawal(
    db: Session,
    *,
    agent_user: models.User,
    user_phone: str,
    amount,
    currency: str = "USD",
    fee_settings: FeeSettings,
) -> models.Transaction:
    """Agent pays out cash against the customer's digital balance.

    user wallet -amount, agent cash -amount, agent credit +net.
    """
    amt, currency, agent, customer, wallet = _prepare(db, agent_user, user_phone, amount, currency, fee_settings)

    if _d(wallet.balance) < amt:
        raise InvalidRequest("Insufficient balance", available=float(wallet.balance))
    if crud.agent_cash(agent, currency) < amt:
        raise InvalidRequest("Agent has insufficient cash", available=float(crud.agent_cash(agent, currency)))

    c = _commission(amt, "WITHDRAW", currency, fee_settings)
    ref = generate_reference_number("WTH")

    ledger.debit_wallet(db, wallet, amt, reason="withdrawal", reference=ref, meta={"agent": agent.agent_code})
    crud.adjust_agent_cash(agent, currency, -amt)
    crud.adjust_agent_credit(agent, currency, c.net_amount)
    agent.total_withdrawals = _d(agent.total_withdrawals or 0) + amt
    _book_fees(db, agent, currency, c, ref)

    tx = _record(db, "WITHDRAW", ref, customer.id, agent_user.id, agent_user.id, amt, currency, c,
                 f"Withdrawal at {agent.business_name}")
    notify(db, customer, title="Withdrawal Completed", message=f"{amt} {currency} paid out in cash",
           ntype="TRANSACTION", meta={"transactionId": tx.id})
    return tx


def _commission(amt: Decimal, tx_type: str, currency: str, fee_settings: FeeSettings) -> Commission:
    c = calculate_commission(amt, tx_type, currency, fee_settings)
    if c.net_amount <= 0:
        raise InvalidRequest("Amount does not cover the fee", fee=float(c.total_fee))
    return c


def _book_fees(db: Session, agent: models.AgentProfile, currency: str, c, ref: str) -> None:
    if c.agent_fee > 0:
        wallet = crud.get_or_create_wallet(db, agent.user_id, currency, "BUSINESS")
        ledger.credit_wallet(db, wallet, c.agent_fee, reason="agent_commission", reference=ref)
    if c.platform_fee > 0:
        ledger.post_to_account(
            db,
            code=ledger.fees_account_code(currency),
            direction="in",
            amount=c.platform_fee,
            currency=currency,
            reason="cash_desk_fee",
            reference=ref,
        )


def _record(db, tx_type, ref, sender_id, receiver_id, agent_id, amount, currency, c, description) -> models.Transaction:
    tx = models.Transaction(
        reference_number=ref,
        tx_type=tx_type,
        status="COMPLETED",
        sender_id=sender_id,
        receiver_id=receiver_id,
        agent_id=agent_id,
        amount=amount,
        fee=c.total_fee,
        platform_fee=c.platform_fee,
        agent_fee=c.agent_fee,
        net_amount=c.net_amount,
        currency=currency,
        description=description,
        completed_at=datetime.now(timezone.utc),
    )
    db.add(tx)
    db.flush()
    logger.info("%s %s %s %s (fee %s)", tx_type, ref, amount, currency, c.total_fee)
    return tx
