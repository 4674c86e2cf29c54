from decimal import Decimal

import pytest

from cashpoint import ledger, models, profits
from cashpoint.errors import InvalidRequest, NotFound

from conftest import balance


@pytest.fixture
def collected(db):
    ledger.post_to_account(db, code="FEES-COLLECTED", direction="in", amount=Decimal("40"), currency="USD",
                           reason="test_seed")
    db.add(models.Transaction(reference_number="TRFSEED0001", tx_type="TRANSFER", status="COMPLETED",
                              amount=Decimal("8000"), fee=Decimal("40"), platform_fee=Decimal("40"),
                              net_amount=Decimal("8000"), currency="USD"))
    db.commit()


def test_stats(db, collected):
    stats = profits.profit_stats(db, period="all")
    assert stats["availableBalance"] == {"USD": 40.0, "SYP": 0.0}
    assert stats["periodStats"]["feesUSD"] == 40.0
    assert stats["periodStats"]["transactionsUSD"] == 1
    assert stats["feesByType"] == [{"type": "TRANSFER", "currency": "USD", "total": 40.0, "count": 1}]
    assert stats["totalWithdrawn"]["USD"] == 0.0


def test_unknown_period(db):
    with pytest.raises(InvalidRequest):
        profits.profit_stats(db, period="decade")


def test_bank_withdrawal(db, admin, collected):
    row = profits.withdraw_profits(db, admin=admin, amount=Decimal("25"), currency="USD",
                                   method="BANK_TRANSFER", bank_name="Bank of Damascus", iban="SY00TEST")
    db.commit()

    assert row.reference_number.startswith("PWD")
    assert profits.available_balance(db, "USD") == Decimal("15")
    assert db.query(models.AuditLog).filter_by(action="PROFIT_WITHDRAWAL").count() == 1
    assert profits.profit_stats(db)["totalWithdrawn"]["USD"] == 25.0


def test_withdrawal_above_balance(db, admin, collected):
    with pytest.raises(InvalidRequest, match="Insufficient profit balance"):
        profits.withdraw_profits(db, admin=admin, amount=Decimal("40.01"), currency="USD", method="CASH")


def test_wallet_withdrawal_credits_user(db, admin, recipient, collected):
    profits.withdraw_profits(db, admin=admin, amount=Decimal("10"), currency="USD", method="USER_WALLET",
                             phone="0922222222")
    db.commit()

    assert balance(db, recipient.id) == Decimal("10")
    assert profits.available_balance(db, "USD") == Decimal("30")
    tx = db.query(models.Transaction).filter_by(tx_type="PROFIT_DISTRIBUTION").one()
    assert tx.receiver_id == recipient.id


def test_wallet_withdrawal_needs_known_phone(db, admin, collected):
    with pytest.raises(InvalidRequest, match="Phone"):
        profits.withdraw_profits(db, admin=admin, amount=Decimal("10"), currency="USD", method="USER_WALLET")
    with pytest.raises(NotFound):
        profits.withdraw_profits(db, admin=admin, amount=Decimal("10"), currency="USD", method="USER_WALLET",
                                 phone="0900000000")
