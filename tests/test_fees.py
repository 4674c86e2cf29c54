from decimal import Decimal

import pytest

from cashpoint.fees import FeeSettings, calculate_commission, fee, quantize_money


def test_fee_is_percent_plus_fixed():
    assert fee(Decimal("100"), Decimal("0.5"), Decimal("0")) == Decimal("0.5")
    assert fee(Decimal("250"), Decimal("1"), Decimal("2")) == Decimal("4.5")
    assert fee(Decimal("0"), Decimal("3"), Decimal("1.25")) == Decimal("1.25")


def test_fee_is_exact():
    assert fee("0.01", "0.5", "0") == Decimal("0.00005")


def test_fee_grows_with_amount():
    amounts = [Decimal(a) for a in ("1", "9.99", "10", "100", "1234.56", "50000")]
    fees = [fee(a, Decimal("1.5"), Decimal("0.25")) for a in amounts]
    assert fees == sorted(fees)


def test_transfer_example_debit_total():
    c = calculate_commission(Decimal("100"), "TRANSFER", "USD", FeeSettings())
    assert c.total_fee == Decimal("0.50")
    assert Decimal("100") + c.total_fee == Decimal("100.50")
    assert c.agent_fee == 0
    assert c.platform_fee == Decimal("0.50")


def test_deposit_splits_agent_commission():
    c = calculate_commission(Decimal("200"), "DEPOSIT", "USD", FeeSettings())
    # 1% of 200, half to the agent
    assert c.total_fee == Decimal("2.00")
    assert c.agent_fee == Decimal("1.00")
    assert c.platform_fee == Decimal("1.00")
    assert c.net_amount == Decimal("198.00")


def test_syp_rounds_to_whole_units():
    c = calculate_commission(Decimal("12345"), "WITHDRAW", "SYP", FeeSettings())
    # 1.5% of 12345 = 185.175
    assert c.total_fee == Decimal("185")
    assert c.agent_fee + c.platform_fee == c.total_fee


def test_usd_rounds_half_up():
    assert quantize_money(Decimal("0.005"), "USD") == Decimal("0.01")
    assert quantize_money(Decimal("2.5"), "SYP") == Decimal("3")


def test_currency_specific_settings():
    s = FeeSettings(transfer_fee_percent_syp=Decimal("2"), transfer_fee_fixed_syp=Decimal("100"))
    assert s.pair("TRANSFER", "SYP") == (Decimal("2"), Decimal("100"))
    assert s.pair("TRANSFER", "usd") == (Decimal("0.5"), Decimal("0"))


def test_public_view_keys():
    view = FeeSettings().public_view("USD")
    assert view["transferFeePercent"] == 0.5
    assert view["transferFeeFixed"] == 0.0
    assert set(view) == {
        "transferFeePercent", "transferFeeFixed",
        "qrPaymentFeePercent", "qrPaymentFeeFixed",
        "depositFeePercent", "depositFeeFixed",
        "withdrawalFeePercent", "withdrawalFeeFixed",
        "serviceFeePercent", "serviceFeeFixed",
    }


def test_unknown_type_and_currency_rejected():
    with pytest.raises(ValueError):
        calculate_commission(Decimal("10"), "LOTTERY", "USD", FeeSettings())
    with pytest.raises(ValueError):
        calculate_commission(Decimal("10"), "TRANSFER", "EUR", FeeSettings())
