# cashpoint/fees.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict

from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from cashpoint import models

CURRENCIES = ("USD", "SYP")

# display/storage precision of commission breakdowns
_QUANT = {
    "USD": Decimal("0.01"),
    "SYP": Decimal("1"),
}

# transaction type -> column prefix on system_settings
_FEE_COLUMNS = {
    "DEPOSIT": "deposit_fee",
    "WITHDRAW": "withdrawal_fee",
    "TRANSFER": "transfer_fee",
    "QR_PAYMENT": "qr_payment_fee",
    "SERVICE_PURCHASE": "service_fee",
}

# agents only earn on the cash desk operations
_AGENT_COMMISSION_TYPES = ("DEPOSIT", "WITHDRAW")


def _d(x) -> Decimal:
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def normalize_currency(currency: str | None) -> str:
    cur = (currency or "USD").upper().strip()
    if cur not in CURRENCIES:
        raise ValueError(f"unsupported currency: {currency}")
    return cur


def quantize_money(value, currency: str) -> Decimal:
    return _d(value).quantize(_QUANT[normalize_currency(currency)], rounding=ROUND_HALF_UP)


def fee(amount, percent, fixed) -> Decimal:
    """amount * percent / 100 + fixed, exact (no rounding)."""
    return _d(amount) * _d(percent) / Decimal("100") + _d(fixed)


class FeeSettings(BaseModel):
    """Immutable snapshot of the system_settings row handed to the domain code."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    deposit_fee_percent: Decimal = Decimal("1.0")
    deposit_fee_fixed: Decimal = Decimal("0")
    withdrawal_fee_percent: Decimal = Decimal("1.5")
    withdrawal_fee_fixed: Decimal = Decimal("0")
    transfer_fee_percent: Decimal = Decimal("0.5")
    transfer_fee_fixed: Decimal = Decimal("0")
    qr_payment_fee_percent: Decimal = Decimal("0.5")
    qr_payment_fee_fixed: Decimal = Decimal("0")
    service_fee_percent: Decimal = Decimal("0")
    service_fee_fixed: Decimal = Decimal("0")
    agent_commission_percent: Decimal = Decimal("50.0")

    deposit_fee_percent_syp: Decimal = Decimal("1.0")
    deposit_fee_fixed_syp: Decimal = Decimal("0")
    withdrawal_fee_percent_syp: Decimal = Decimal("1.5")
    withdrawal_fee_fixed_syp: Decimal = Decimal("0")
    transfer_fee_percent_syp: Decimal = Decimal("0.5")
    transfer_fee_fixed_syp: Decimal = Decimal("0")
    qr_payment_fee_percent_syp: Decimal = Decimal("0.5")
    qr_payment_fee_fixed_syp: Decimal = Decimal("0")
    service_fee_percent_syp: Decimal = Decimal("0")
    service_fee_fixed_syp: Decimal = Decimal("0")
    agent_commission_percent_syp: Decimal = Decimal("50.0")

    settlement_platform_commission: Decimal = Decimal("0.5")
    settlement_agent_commission: Decimal = Decimal("0.5")
    min_transaction_amount: Decimal = Decimal("1")
    max_transaction_amount: Decimal = Decimal("50000")

    def pair(self, tx_type: str, currency: str) -> tuple[Decimal, Decimal]:
        """(percent, fixed) for a transaction type in a currency."""
        prefix = _FEE_COLUMNS[tx_type]
        suffix = "_syp" if normalize_currency(currency) == "SYP" else ""
        return getattr(self, f"{prefix}_percent{suffix}"), getattr(self, f"{prefix}_fixed{suffix}")

    def agent_commission(self, currency: str) -> Decimal:
        if normalize_currency(currency) == "SYP":
            return self.agent_commission_percent_syp
        return self.agent_commission_percent

    def public_view(self, currency: str) -> Dict[str, float]:
        """Wire shape of GET /api/fees."""
        out: Dict[str, float] = {}
        for tx_type, key in (
            ("TRANSFER", "transferFee"),
            ("QR_PAYMENT", "qrPaymentFee"),
            ("DEPOSIT", "depositFee"),
            ("WITHDRAW", "withdrawalFee"),
            ("SERVICE_PURCHASE", "serviceFee"),
        ):
            percent, fixed = self.pair(tx_type, currency)
            out[f"{key}Percent"] = float(percent)
            out[f"{key}Fixed"] = float(fixed)
        return out


def load_fee_settings(db: Session) -> FeeSettings:
    row = db.query(models.SystemSettings).order_by(models.SystemSettings.id.asc()).first()
    if row is None:
        return FeeSettings()
    return FeeSettings.model_validate(row)


@dataclass(frozen=True)
class Commission:
    total_fee: Decimal
    platform_fee: Decimal
    agent_fee: Decimal
    net_amount: Decimal


def calculate_commission(amount, tx_type: str, currency: str, settings: FeeSettings) -> Commission:
    tx_type = tx_type.upper().strip()
    if tx_type not in _FEE_COLUMNS:
        raise ValueError(f"unknown transaction type: {tx_type}")
    currency = normalize_currency(currency)

    amt = _d(amount)
    percent, fixed = settings.pair(tx_type, currency)
    total_fee = quantize_money(fee(amt, percent, fixed), currency)

    agent_percent = settings.agent_commission(currency) if tx_type in _AGENT_COMMISSION_TYPES else Decimal("0")
    agent_fee = quantize_money(total_fee * agent_percent / Decimal("100"), currency)
    platform_fee = total_fee - agent_fee

    return Commission(
        total_fee=total_fee,
        platform_fee=platform_fee,
        agent_fee=agent_fee,
        net_amount=amt - total_fee,
    )
