# cashpoint/transfers.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.orm import Session

from cashpoint import crud, ledger, models
from cashpoint.core.config import settings
from cashpoint.errors import InvalidRequest, NotFound, Unauthorized
from cashpoint.fees import FeeSettings, calculate_commission, normalize_currency, quantize_money
from cashpoint.notifications import notify, queue_push
from cashpoint.otp import generate_otp, hash_otp, is_otp_expired, otp_expiry, verify_otp
from cashpoint.security import generate_reference_number, sanitize_phone, validate_amount

logger = logging.getLogger(__name__)


def _d(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class InitiatedTransfer:
    transfer_request_id: str
    expires_in: int
    recipient_name: str
    recipient_phone: str
    otp: str  # only ever surfaced in development mode


def _check_limits(amount: Decimal, fee_settings: FeeSettings) -> None:
    if not validate_amount(amount):
        raise InvalidRequest("Invalid amount")
    if amount < fee_settings.min_transaction_amount:
        raise InvalidRequest(f"Minimum transaction amount is {fee_settings.min_transaction_amount}")
    if amount > fee_settings.max_transaction_amount:
        raise InvalidRequest(f"Maximum transaction amount is {fee_settings.max_transaction_amount}")


def _currency(currency: str | None) -> str:
    try:
        return normalize_currency(currency)
    except ValueError as e:
        raise InvalidRequest(str(e)) from e


def initiate_transfer(
    db: Session,
    *,
    sender: models.User,
    recipient_phone: str,
    amount,
    currency: str = "USD",
    note: Optional[str] = None,
    fee_settings: FeeSettings,
    otp_factory: Callable[[], str] = generate_otp,
    now: Optional[datetime] = None,
) -> InitiatedTransfer:
    """Step 1: validate, store a hashed one-time code and send it out-of-band."""
    amt = _d(amount)
    currency = _currency(currency)
    _check_limits(amt, fee_settings)

    recipient = crud.get_user_by_phone(db, sanitize_phone(recipient_phone))
    if not recipient or not recipient.is_active:
        raise NotFound("Recipient not found")
    if recipient.user_type == "AGENT":
        raise InvalidRequest("Cannot transfer to agents")
    if recipient.id == sender.id:
        raise InvalidRequest("Cannot transfer to yourself")

    commission = calculate_commission(amt, "TRANSFER", currency, fee_settings)
    required = amt + commission.total_fee

    sender_wallet = crud.get_wallet(db, sender.id, currency)
    balance = _d(sender_wallet.balance) if sender_wallet else Decimal("0")
    if balance < required:
        raise InvalidRequest(
            f"Insufficient {currency} balance",
            available=float(balance),
            required=float(required),
        )

    if not crud.get_wallet(db, recipient.id, currency):
        raise InvalidRequest(f"Recipient has no {currency} wallet")

    # a new request supersedes any unused one
    db.query(models.TransferOTP).filter(
        models.TransferOTP.user_id == sender.id,
        models.TransferOTP.is_used.is_(False),
    ).delete(synchronize_session=False)

    otp = otp_factory()
    row = models.TransferOTP(
        user_id=sender.id,
        recipient_id=recipient.id,
        otp_hash=hash_otp(otp),
        amount=amt,
        currency=currency,
        note=note,
        expires_at=otp_expiry(settings.OTP_EXPIRY_SECONDS, now),
        attempts=0,
        max_attempts=settings.OTP_MAX_ATTEMPTS,
        is_used=False,
        is_expired=False,
    )
    db.add(row)
    db.flush()

    minutes = max(1, settings.OTP_EXPIRY_SECONDS // 60)
    # in-app copy never carries the code
    notify(
        db,
        sender,
        title="Transfer Confirmation",
        message=(
            f"Confirm sending {quantize_money(amt, currency)} {currency} to {recipient.full_name} "
            f"within {minutes} minutes"
        ),
        ntype="SECURITY",
        meta={"transferRequestId": row.id},
        push=False,
    )
    if not queue_push(db, sender, f"Transfer confirmation code: {otp}\nValid for {minutes} minutes"):
        # code stays stored; the user can ask for a resend
        logger.info("No push channel for user %s, transfer %s awaits resend", sender.id, row.id)

    return InitiatedTransfer(
        transfer_request_id=row.id,
        expires_in=settings.OTP_EXPIRY_SECONDS,
        recipient_name=recipient.full_name,
        recipient_phone=recipient.phone,
        otp=otp,
    )


def process_transfer(
    db: Session,
    *,
    sender_id: int,
    receiver_id: int,
    amount,
    currency: str,
    fee_settings: FeeSettings,
    note: Optional[str] = None,
) -> models.Transaction:
    """Move money between two personal wallets; sender pays amount + fee."""
    if sender_id == receiver_id:
        raise InvalidRequest("Cannot transfer to yourself")

    amt = _d(amount)
    keys = [(sender_id, currency, "PERSONAL"), (receiver_id, currency, "PERSONAL")]
    wallets = crud.lock_wallets(db, keys)
    sender_wallet = wallets.get(keys[0])
    receiver_wallet = wallets.get(keys[1])
    if sender_wallet is None:
        raise NotFound("Sender wallet not found")
    if receiver_wallet is None:
        raise NotFound("Receiver wallet not found")

    commission = calculate_commission(amt, "TRANSFER", currency, fee_settings)
    required = amt + commission.total_fee
    if _d(sender_wallet.balance) < required:
        raise InvalidRequest(
            "Insufficient balance",
            available=float(sender_wallet.balance),
            required=float(required),
        )

    ref = generate_reference_number("TRF")
    ledger.debit_wallet(db, sender_wallet, amt, reason="transfer_out", reference=ref, meta={"to": receiver_id})
    if commission.total_fee > 0:
        ledger.debit_wallet(db, sender_wallet, commission.total_fee, reason="transfer_fee", reference=ref)
        ledger.post_to_account(
            db,
            code=ledger.fees_account_code(currency),
            direction="in",
            amount=commission.total_fee,
            currency=currency,
            reason="transfer_fee",
            reference=ref,
        )
    ledger.credit_wallet(db, receiver_wallet, amt, reason="transfer_in", reference=ref, meta={"from": sender_id})

    tx = models.Transaction(
        reference_number=ref,
        tx_type="TRANSFER",
        status="COMPLETED",
        sender_id=sender_id,
        receiver_id=receiver_id,
        amount=amt,
        fee=commission.total_fee,
        platform_fee=commission.platform_fee,
        agent_fee=Decimal("0"),
        net_amount=amt,
        currency=currency,
        description=note or "P2P transfer",
        completed_at=_utcnow(),
    )
    db.add(tx)
    db.flush()
    return tx


def confirm_transfer(
    db: Session,
    *,
    user: models.User,
    transfer_request_id: str,
    otp: str,
    fee_settings: FeeSettings,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.Transaction:
    """Step 2: check the code and commit the transfer.

    Expiry and attempt bookkeeping is committed before the error is raised, so
    it survives the caller's rollback.
    """
    row = db.query(models.TransferOTP).filter(models.TransferOTP.id == transfer_request_id).with_for_update().first()
    if not row:
        raise NotFound("Transfer request not found")
    if row.user_id != user.id:
        raise Unauthorized("Unauthorized")
    if row.is_used:
        raise InvalidRequest("OTP already used")

    if row.is_expired or is_otp_expired(row.expires_at, now):
        row.is_expired = True
        db.commit()
        raise InvalidRequest("OTP expired. Please request a new one")

    if row.attempts >= row.max_attempts:
        raise InvalidRequest("Maximum attempts exceeded. Please request a new OTP", remainingAttempts=0)

    if not verify_otp(otp, row.otp_hash):
        row.attempts += 1
        remaining = max(0, row.max_attempts - row.attempts)
        db.commit()
        logger.info("Wrong OTP for transfer %s (%d attempts left)", row.id, remaining)
        raise InvalidRequest("Invalid OTP", remainingAttempts=remaining)

    currency = row.currency or "USD"
    tx = process_transfer(
        db,
        sender_id=row.user_id,
        receiver_id=row.recipient_id,
        amount=row.amount,
        currency=currency,
        fee_settings=fee_settings,
        note=row.note,
    )
    row.is_used = True
    db.add(row)

    recipient = row.recipient
    shown = f"{quantize_money(row.amount, currency)} {currency}"
    notify(
        db,
        user,
        title="Transfer Sent",
        message=f"You sent {shown} to {recipient.full_name}",
        ntype="TRANSACTION",
        meta={"transactionId": tx.id},
    )
    notify(
        db,
        recipient,
        title="Transfer Received",
        message=f"You received {shown} from {user.full_name}",
        ntype="TRANSACTION",
        meta={"transactionId": tx.id},
    )
    crud.audit(
        db,
        user_id=user.id,
        action="TRANSFER_COMPLETED",
        entity="Transaction",
        entity_id=tx.id,
        new_value={"amount": row.amount, "currency": currency, "recipientId": row.recipient_id},
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return tx
