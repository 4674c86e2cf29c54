# cashpoint/schemas.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from cashpoint.otp import OTP_LENGTH


class CamelModel(BaseModel):
    """Wire models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# -------- Auth --------

class RegisterIn(CamelModel):
    phone: str = Field(min_length=6, max_length=20)
    full_name: str = Field(min_length=2, max_length=128)
    password: str = Field(min_length=6, max_length=128)
    telegram_chat_id: Optional[int] = None


class LoginIn(CamelModel):
    phone: str
    password: str


class WalletOut(CamelModel):
    currency: str
    wallet_type: str
    balance: float


class UserOut(CamelModel):
    id: int
    phone: str
    full_name: str
    user_type: str
    wallets: List[WalletOut] = []


# -------- Transfers --------

class InitiateTransferIn(CamelModel):
    recipient_phone: str
    amount: Decimal = Field(gt=0)
    currency: str = "USD"
    note: Optional[str] = Field(default=None, max_length=200)


class ConfirmTransferIn(CamelModel):
    transfer_request_id: str
    otp: str

    @field_validator("otp")
    @classmethod
    def _digits_only(cls, v: str) -> str:
        v = v.strip()
        if len(v) != OTP_LENGTH or not v.isdigit():
            raise ValueError(f"OTP must be {OTP_LENGTH} digits")
        return v


# -------- Agents --------

class CashDeskIn(CamelModel):
    user_phone: str
    amount: Decimal = Field(gt=0)
    currency: str = "USD"


class SettlementCreateIn(CamelModel):
    settlement_type: str = "CASH_TO_CREDIT"
    currency: str = "USD"
    amount: Optional[Decimal] = Field(default=None, gt=0)
    notes: Optional[str] = None


class SettlementActionIn(CamelModel):
    settlement_id: int
    action: str
    delivery_method: Optional[str] = None
    source_agent_id: Optional[int] = None
    notes: Optional[str] = None


class AgentBrief(CamelModel):
    id: int
    agent_code: str
    business_name: str


class SettlementOut(CamelModel):
    id: int
    settlement_number: str
    settlement_type: str
    currency: str
    status: str
    requested_amount: float
    cash_collected: Optional[float] = None
    platform_share: Optional[float] = None
    agent_share: Optional[float] = None
    amount_due: Optional[float] = None
    credit_given: Optional[float] = None
    cash_to_receive: Optional[float] = None
    credit_deducted: Optional[float] = None
    delivery_method: Optional[str] = None
    delivery_status: Optional[str] = None
    source_agent_id: Optional[int] = None
    notes: Optional[str] = None
    admin_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    agent: Optional[AgentBrief] = None


class AgentCashOut(CamelModel):
    id: int
    agent_code: str
    business_name: str
    cash_collected: float
    cash_collected_syp: float
    current_credit: float
    current_credit_syp: float


class TransactionOut(CamelModel):
    id: int
    reference_number: str
    tx_type: str = Field(serialization_alias="type")
    status: str
    amount: float
    fee: float
    net_amount: float
    currency: str
    created_at: Optional[datetime] = None


# -------- Admin --------

class ExchangeRatesIn(CamelModel):
    deposit_rate: Decimal
    withdraw_rate: Decimal


class ProfitWithdrawalIn(CamelModel):
    amount: Decimal = Field(gt=0)
    currency: str = "USD"
    method: str
    notes: Optional[str] = None
    bank_details: Optional[Dict[str, Any]] = None
    phone: Optional[str] = None
    wallet_type: str = "PERSONAL"


class ProfitWithdrawalOut(CamelModel):
    id: int
    reference_number: str
    amount: float
    currency: str
    method: str
    bank_name: Optional[str] = None
    account_number: Optional[str] = None
    iban: Optional[str] = None
    notes: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None


class AuditLogOut(CamelModel):
    id: int
    user_id: Optional[int] = None
    action: str
    entity: str
    entity_id: Optional[str] = None
    new_value: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None
