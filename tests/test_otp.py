from datetime import datetime, timedelta, timezone

from cashpoint.otp import OTP_LENGTH, generate_otp, hash_otp, is_otp_expired, otp_expiry, verify_otp
from cashpoint.security import generate_reference_number, sanitize_phone, validate_amount


def test_generated_codes_are_six_digits():
    for _ in range(50):
        code = generate_otp()
        assert len(code) == OTP_LENGTH == 6
        assert code.isdigit()
        assert not code.startswith("0")


def test_hash_and_verify():
    hashed = hash_otp("482913")
    assert hashed != "482913"
    assert verify_otp("482913", hashed)
    assert not verify_otp("482914", hashed)


def test_verify_against_garbage_hash():
    assert not verify_otp("482913", "not-a-bcrypt-hash")


def test_expiry_window():
    start = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    expires = otp_expiry(300, start)
    assert not is_otp_expired(expires, start + timedelta(seconds=299))
    assert is_otp_expired(expires, start + timedelta(seconds=301))


def test_naive_timestamps_are_utc():
    start = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    naive = datetime(2026, 1, 1, 12, 5)
    assert not is_otp_expired(naive, start)
    assert is_otp_expired(naive, start + timedelta(minutes=6))


def test_phone_normalisation():
    assert sanitize_phone("0944 123 456") == "+963944123456"
    assert sanitize_phone("944123456") == "+963944123456"
    assert sanitize_phone("+963-944-123-456") == "+963944123456"


def test_reference_numbers():
    ref = generate_reference_number("TRF")
    assert ref.startswith("TRF")
    assert ref[-4:].isdigit()


def test_amount_bounds():
    assert validate_amount("0.01")
    assert not validate_amount("0")
    assert not validate_amount("-5")
    assert not validate_amount("100000001")
    assert not validate_amount("NaN")
