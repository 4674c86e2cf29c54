# cashpoint/api/transactions.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import or_
from sqlalchemy.orm import Session

from cashpoint import crud, ledger, models
from cashpoint.api.deps import client_ip, get_current_user, get_fee_settings
from cashpoint.core.config import settings
from cashpoint.database import get_db
from cashpoint.errors import InvalidRequest, NotFound
from cashpoint.fees import FeeSettings, normalize_currency
from cashpoint.schemas import ConfirmTransferIn, InitiateTransferIn, TransactionOut, WalletOut
from cashpoint.transfers import confirm_transfer, initiate_transfer

router = APIRouter(prefix="/api", tags=["wallet"])


@router.get("/wallet")
def wallet(user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
    recent = (
        db.query(models.Transaction)
        .filter(or_(models.Transaction.sender_id == user.id, models.Transaction.receiver_id == user.id))
        .order_by(models.Transaction.id.desc())
        .limit(20)
        .all()
    )
    return {
        "wallets": [WalletOut.model_validate(w).model_dump(by_alias=True) for w in user.wallets],
        "transactions": [TransactionOut.model_validate(t).model_dump(by_alias=True) for t in recent],
    }


@router.get("/wallet/statement")
def wallet_statement(
    currency: str = Query("USD"),
    limit: int = Query(20, ge=1, le=200),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        currency = normalize_currency(currency)
    except ValueError as e:
        raise InvalidRequest(str(e)) from e
    w = crud.get_wallet(db, user.id, currency)
    if w is None:
        raise NotFound(f"No {currency} wallet")
    entries = ledger.get_statement(db, wallet_id=w.id, limit=limit)
    return {
        "currency": currency,
        "balance": float(w.balance),
        "entries": [
            {
                "direction": e.direction,
                "amount": float(e.amount),
                "reason": e.reason,
                "reference": e.reference,
                "createdAt": e.created_at,
            }
            for e in entries
        ],
    }


@router.post("/transactions/transfer/initiate")
def transfer_initiate(
    body: InitiateTransferIn,
    user: models.User = Depends(get_current_user),
    fee_settings: FeeSettings = Depends(get_fee_settings),
    db: Session = Depends(get_db),
):
    result = initiate_transfer(
        db,
        sender=user,
        recipient_phone=body.recipient_phone,
        amount=body.amount,
        currency=body.currency,
        note=body.note,
        fee_settings=fee_settings,
    )
    db.commit()

    out = {
        "transferRequestId": result.transfer_request_id,
        "expiresIn": result.expires_in,
        "recipient": {"name": result.recipient_name, "phone": result.recipient_phone},
    }
    if settings.EXPOSE_DEV_OTP:
        out["devOtp"] = result.otp
    return out


@router.post("/transactions/transfer/confirm")
def transfer_confirm(
    body: ConfirmTransferIn,
    request: Request,
    user: models.User = Depends(get_current_user),
    fee_settings: FeeSettings = Depends(get_fee_settings),
    db: Session = Depends(get_db),
):
    tx = confirm_transfer(
        db,
        user=user,
        transfer_request_id=body.transfer_request_id,
        otp=body.otp,
        fee_settings=fee_settings,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    db.commit()
    return {"success": True, "transactionId": tx.id, "referenceNumber": tx.reference_number}
