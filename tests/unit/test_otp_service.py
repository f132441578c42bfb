from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from rbac_panel.services import auth_service, otp_service
from rbac_panel.services.exceptions import OtpError


class FakeUser(SimpleNamespace):
    async def save(self) -> None:
        self.saved = getattr(self, "saved", 0) + 1


class RecordingDelivery:
    def __init__(self) -> None:
        self.sent: list[dict] = []

    async def send(self, *, email, code, purpose, expires_at) -> None:
        self.sent.append({"email": email, "code": code, "purpose": purpose, "expires_at": expires_at})


def _user(**overrides) -> FakeUser:
    values = {
        "email": "u@example.com",
        "email_verified_at": None,
        "otp_hash": None,
        "otp_expires_at": None,
        "otp_attempts": 0,
        "updated_at": None,
    }
    values.update(overrides)
    return FakeUser(**values)


@pytest.fixture
def delivery():
    original = otp_service.get_delivery()
    recording = RecordingDelivery()
    otp_service.set_delivery(recording)
    yield recording
    otp_service.set_delivery(original)


@pytest.mark.unit
def test_generate_code_is_zero_padded_digits() -> None:
    for _ in range(50):
        code = otp_service.generate_code(4)
        assert len(code) == 4
        assert code.isdigit()


@pytest.mark.unit
def test_check_otp_fails_closed() -> None:
    now = datetime.now(timezone.utc)
    hashed = auth_service.hash_password("0042")

    assert otp_service.check_otp(_user(), "0042") == (False, "未找到验证码或验证码已失效")

    expired = _user(otp_hash=hashed, otp_expires_at=now - timedelta(seconds=1))
    assert otp_service.check_otp(expired, "0042", now=now) == (False, "验证码已过期")

    valid = _user(otp_hash=hashed, otp_expires_at=now + timedelta(minutes=5))
    assert otp_service.check_otp(valid, "9999", now=now) == (False, "验证码不正确")
    assert otp_service.check_otp(valid, " 0042 ", now=now) == (True, None)


@pytest.mark.unit
def test_check_otp_accepts_naive_expiry_from_storage() -> None:
    now = datetime.now(timezone.utc)
    user = _user(
        otp_hash=auth_service.hash_password("1234"),
        otp_expires_at=(now + timedelta(minutes=1)).replace(tzinfo=None),
    )

    assert otp_service.check_otp(user, "1234", now=now) == (True, None)


@pytest.mark.unit
async def test_generate_and_verify_email_otp(delivery: RecordingDelivery) -> None:
    user = _user()

    code = await otp_service.generate_otp(user, otp_service.OtpPurpose.EMAIL_VERIFICATION)

    assert delivery.sent[0]["code"] == code
    assert delivery.sent[0]["email"] == "u@example.com"
    assert user.otp_hash and user.otp_hash != code

    await otp_service.verify_otp(user, code)
    assert user.otp_hash is None
    assert user.otp_expires_at is None

    with pytest.raises(OtpError):
        await otp_service.verify_otp(user, code)


@pytest.mark.unit
async def test_password_reset_requires_verified_email(delivery: RecordingDelivery) -> None:
    with pytest.raises(OtpError) as exc_info:
        await otp_service.generate_otp(_user(), otp_service.OtpPurpose.PASSWORD_RESET)

    assert exc_info.value.error_code == "email_not_verified"
    assert delivery.sent == []

    verified = _user(email_verified_at=datetime.now(timezone.utc))
    await otp_service.generate_otp(verified, otp_service.OtpPurpose.PASSWORD_RESET)
    assert delivery.sent[0]["purpose"] is otp_service.OtpPurpose.PASSWORD_RESET


@pytest.mark.unit
async def test_code_is_discarded_after_too_many_wrong_guesses(delivery: RecordingDelivery) -> None:
    user = _user()
    code = await otp_service.generate_otp(user, otp_service.OtpPurpose.EMAIL_VERIFICATION)

    for _ in range(otp_service.OTP_MAX_ATTEMPTS - 1):
        with pytest.raises(OtpError, match="验证码不正确"):
            await otp_service.verify_otp(user, "x")
    assert user.otp_attempts == otp_service.OTP_MAX_ATTEMPTS - 1

    with pytest.raises(OtpError, match="次数过多"):
        await otp_service.verify_otp(user, "x")
    assert user.otp_hash is None
    assert user.otp_attempts == 0

    with pytest.raises(OtpError):
        await otp_service.verify_otp(user, code)


@pytest.mark.unit
async def test_new_code_resets_wrong_guess_counter(delivery: RecordingDelivery) -> None:
    user = _user()
    await otp_service.generate_otp(user, otp_service.OtpPurpose.EMAIL_VERIFICATION)
    with pytest.raises(OtpError):
        await otp_service.verify_otp(user, "x")
    assert user.otp_attempts == 1

    code = await otp_service.generate_otp(user, otp_service.OtpPurpose.EMAIL_VERIFICATION)
    assert user.otp_attempts == 0

    await otp_service.verify_otp(user, code)
    assert user.otp_hash is None
