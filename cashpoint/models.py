# cashpoint/models.py
from __future__ import annotations

import uuid

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Numeric,
    DateTime,
    Integer,
    Boolean,
    Text,
    Index,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

MONEY = Numeric(24, 8)
PERCENT = Numeric(10, 4)


def _uuid() -> str:
    return str(uuid.uuid4())


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    phone = Column(String(20), unique=True, nullable=False)  # normalised, +963...
    full_name = Column(String(128), nullable=False)
    user_type = Column(String(16), nullable=False, default="USER")  # USER / AGENT / MERCHANT / ADMIN
    password_hash = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # push channel (optional)
    telegram_chat_id = Column(BigInteger, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)

    wallets = relationship("Wallet", back_populates="user", lazy="selectin")
    agent_profile = relationship("AgentProfile", back_populates="user", uselist=False)


class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    currency = Column(String(8), nullable=False, default="USD")  # USD / SYP
    wallet_type = Column(String(16), nullable=False, default="PERSONAL")  # PERSONAL / BUSINESS
    balance = Column(MONEY, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)

    user = relationship("User", back_populates="wallets")

    __table_args__ = (
        UniqueConstraint("user_id", "currency", "wallet_type", name="uq_wallets_user_currency_type"),
        Index("ix_wallets_user_id", "user_id"),
    )


class AgentProfile(Base):
    __tablename__ = "agent_profiles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    agent_code = Column(String(32), unique=True, nullable=False)
    business_name = Column(String(128), nullable=False)

    # float the platform extended to the agent (digital balance it can hand out)
    current_credit = Column(MONEY, nullable=False, default=0)
    current_credit_syp = Column(MONEY, nullable=False, default=0)

    # physical cash in the agent's hands
    cash_collected = Column(MONEY, nullable=False, default=0)
    cash_collected_syp = Column(MONEY, nullable=False, default=0)

    total_deposits = Column(MONEY, nullable=False, default=0)
    total_withdrawals = Column(MONEY, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)

    user = relationship("User", back_populates="agent_profile")


class Settlement(Base):
    __tablename__ = "settlements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    settlement_number = Column(String(32), unique=True, nullable=False)
    agent_id = Column(Integer, ForeignKey("agent_profiles.id"), nullable=False)

    # CASH_TO_CREDIT / CREDIT_REQUEST / CASH_REQUEST
    settlement_type = Column(String(32), nullable=False, default="CASH_TO_CREDIT")
    currency = Column(String(8), nullable=False, default="USD")
    requested_amount = Column(MONEY, nullable=False)

    # CASH_TO_CREDIT breakdown
    cash_collected = Column(MONEY, nullable=True)
    platform_share = Column(MONEY, nullable=True)
    agent_share = Column(MONEY, nullable=True)
    amount_due = Column(MONEY, nullable=True)
    credit_given = Column(MONEY, nullable=True)

    # CASH_REQUEST logistics
    cash_to_receive = Column(MONEY, nullable=True)
    credit_deducted = Column(MONEY, nullable=True)
    delivery_method = Column(String(32), nullable=True)  # FROM_PLATFORM / FROM_ADMIN / FROM_AGENT
    delivery_status = Column(String(16), nullable=True)  # PENDING / CONFIRMED
    source_agent_id = Column(Integer, ForeignKey("agent_profiles.id"), nullable=True)

    # PENDING / APPROVED / COMPLETED / REJECTED
    status = Column(String(16), nullable=False, default="PENDING")
    notes = Column(Text, nullable=True)
    admin_notes = Column(Text, nullable=True)

    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    agent = relationship("AgentProfile", foreign_keys=[agent_id])
    source_agent = relationship("AgentProfile", foreign_keys=[source_agent_id])

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_settlements_agent_status", "agent_id", "status"),
        Index("ix_settlements_status", "status"),
    )


class TransferOTP(Base):
    """Pending P2P transfer waiting for its one-time code."""

    __tablename__ = "transfer_otps"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    recipient_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    otp_hash = Column(Text, nullable=False)
    amount = Column(MONEY, nullable=False)
    currency = Column(String(8), nullable=False, default="USD")
    note = Column(String(200), nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)
    is_used = Column(Boolean, nullable=False, default=False)
    is_expired = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)

    recipient = relationship("User", foreign_keys=[recipient_id])

    __table_args__ = (
        Index("ix_transfer_otps_user_used", "user_id", "is_used"),
    )


class SystemSettings(Base):
    """Single row. Read through cashpoint.fees.FeeSettings, never mutated in place by domain code."""

    __tablename__ = "system_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # USD
    deposit_fee_percent = Column(PERCENT, nullable=False, default=1.0)
    deposit_fee_fixed = Column(PERCENT, nullable=False, default=0)
    withdrawal_fee_percent = Column(PERCENT, nullable=False, default=1.5)
    withdrawal_fee_fixed = Column(PERCENT, nullable=False, default=0)
    transfer_fee_percent = Column(PERCENT, nullable=False, default=0.5)
    transfer_fee_fixed = Column(PERCENT, nullable=False, default=0)
    qr_payment_fee_percent = Column(PERCENT, nullable=False, default=0.5)
    qr_payment_fee_fixed = Column(PERCENT, nullable=False, default=0)
    service_fee_percent = Column(PERCENT, nullable=False, default=0)
    service_fee_fixed = Column(PERCENT, nullable=False, default=0)
    agent_commission_percent = Column(PERCENT, nullable=False, default=50.0)

    # SYP
    deposit_fee_percent_syp = Column(PERCENT, nullable=False, default=1.0)
    deposit_fee_fixed_syp = Column(PERCENT, nullable=False, default=0)
    withdrawal_fee_percent_syp = Column(PERCENT, nullable=False, default=1.5)
    withdrawal_fee_fixed_syp = Column(PERCENT, nullable=False, default=0)
    transfer_fee_percent_syp = Column(PERCENT, nullable=False, default=0.5)
    transfer_fee_fixed_syp = Column(PERCENT, nullable=False, default=0)
    qr_payment_fee_percent_syp = Column(PERCENT, nullable=False, default=0.5)
    qr_payment_fee_fixed_syp = Column(PERCENT, nullable=False, default=0)
    service_fee_percent_syp = Column(PERCENT, nullable=False, default=0)
    service_fee_fixed_syp = Column(PERCENT, nullable=False, default=0)
    agent_commission_percent_syp = Column(PERCENT, nullable=False, default=50.0)

    # settlements & limits
    settlement_platform_commission = Column(PERCENT, nullable=False, default=0.5)
    settlement_agent_commission = Column(PERCENT, nullable=False, default=0.5)
    min_transaction_amount = Column(MONEY, nullable=False, default=1)
    max_transaction_amount = Column(MONEY, nullable=False, default=50000)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=True)
    updated_by = Column(Integer, nullable=True)


class ExchangeRate(Base):
    __tablename__ = "exchange_rates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rate_type = Column(String(16), nullable=False)  # DEPOSIT / WITHDRAW
    rate = Column(MONEY, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_by = Column(Integer, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)

    __table_args__ = (
        Index("ix_exchange_rates_type_active", "rate_type", "is_active"),
    )


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference_number = Column(String(32), unique=True, nullable=False)

    tx_type = Column(String(32), nullable=False)  # DEPOSIT / WITHDRAW / TRANSFER / SETTLEMENT / PROFIT_DISTRIBUTION
    status = Column(String(16), nullable=False, default="COMPLETED")

    sender_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    receiver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    agent_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    amount = Column(MONEY, nullable=False)
    fee = Column(MONEY, nullable=False, default=0)
    platform_fee = Column(MONEY, nullable=False, default=0)
    agent_fee = Column(MONEY, nullable=False, default=0)
    net_amount = Column(MONEY, nullable=False)
    currency = Column(String(8), nullable=False, default="USD")

    description = Column(Text, nullable=True)
    meta = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_transactions_sender", "sender_id"),
        Index("ix_transactions_receiver", "receiver_id"),
        Index("ix_transactions_type_currency", "tx_type", "currency"),
    )


class InternalAccount(Base):
    __tablename__ = "internal_accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(32), unique=True, nullable=False)  # FEES-COLLECTED / FEES-COLLECTED-SYP
    name = Column(String(128), nullable=False)
    currency = Column(String(8), nullable=False, default="USD")
    balance = Column(MONEY, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now(), nullable=True)


class LedgerEntry(Base):
    """Append-only journal of balance movements (wallets and internal accounts)."""

    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # exactly one of wallet_id / account_code is set
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=True)
    account_code = Column(String(32), nullable=True)

    direction = Column(String(16), nullable=False)  # in / out
    amount = Column(MONEY, nullable=False)
    currency = Column(String(8), nullable=False, default="USD")
    reason = Column(String(64), nullable=False, default="manual")
    reference = Column(String(32), nullable=True)
    meta = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)

    __table_args__ = (
        Index("ix_ledger_entries_wallet", "wallet_id"),
        Index("ix_ledger_entries_account", "account_code"),
        Index("ix_ledger_entries_reference", "reference"),
    )


class ProfitWithdrawal(Base):
    __tablename__ = "profit_withdrawals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference_number = Column(String(32), unique=True, nullable=False)
    admin_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    amount = Column(MONEY, nullable=False)
    currency = Column(String(8), nullable=False, default="USD")
    method = Column(String(32), nullable=False)  # BANK_TRANSFER / CASH / CRYPTO / USER_WALLET

    bank_name = Column(String(128), nullable=True)
    account_number = Column(String(64), nullable=True)
    iban = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(String(16), nullable=False, default="COMPLETED")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String(64), nullable=False)
    entity = Column(String(64), nullable=False)
    entity_id = Column(String(64), nullable=True)
    new_value = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(256), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_action", "action"),
        Index("ix_audit_logs_entity", "entity", "entity_id"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    ntype = Column(String(32), nullable=False, default="SYSTEM")  # SYSTEM / TRANSACTION / SECURITY
    title = Column(String(128), nullable=False)
    message = Column(Text, nullable=False)
    meta = Column(Text, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=True)

    __table_args__ = (
        Index("ix_notifications_user", "user_id"),
    )
