"""邮箱验证码服务。

验证码以 bcrypt 哈希和过期时间保存在用户文档上；缺失、过期、不匹配都按
失败处理，连续输错达到上限后验证码作废。发送环节通过 ``OtpDelivery``
注入，默认实现只写日志且不记录明文。
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
import logging
import secrets
from typing import Protocol

from rbac_panel.config import OTP_LENGTH, OTP_MAX_ATTEMPTS, OTP_TTL_MINUTES
from rbac_panel.models import User
from rbac_panel.models.user import utc_now
from rbac_panel.services import auth_service
from rbac_panel.services.exceptions import OtpError

logger = logging.getLogger(__name__)


class OtpPurpose(str, Enum):
    EMAIL_VERIFICATION = "verification"
    PASSWORD_RESET = "password-reset"

    @property
    def requires_verified_email(self) -> bool:
        return self is OtpPurpose.PASSWORD_RESET

    @property
    def message(self) -> str:
        if self is OtpPurpose.PASSWORD_RESET:
            return "重置密码验证码已发送到您的邮箱"
        return "邮箱验证码已发送到您的邮箱"


class OtpDelivery(Protocol):
    """验证码投递接口。"""

    async def send(self, *, email: str, code: str, purpose: OtpPurpose, expires_at: datetime) -> None: ...


class LoggingOtpDelivery:
    """未配置邮件通道时使用的投递实现。"""

    async def send(self, *, email: str, code: str, purpose: OtpPurpose, expires_at: datetime) -> None:
        logger.info(
            "验证码已生成（未投递）: email=%s purpose=%s expires_at=%s",
            email,
            purpose.value,
            expires_at.isoformat(),
        )


_delivery: OtpDelivery = LoggingOtpDelivery()


def set_delivery(delivery: OtpDelivery) -> None:
    global _delivery
    _delivery = delivery


def get_delivery() -> OtpDelivery:
    return _delivery


def generate_code(length: int = OTP_LENGTH) -> str:
    return str(secrets.randbelow(10**length)).zfill(length)


def _as_aware(value: datetime) -> datetime:
    # Mongo 取回的时间不带时区，统一按 UTC 处理
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def generate_otp(user: User, purpose: OtpPurpose, *, email: str | None = None) -> str:
    """生成并保存验证码，随后交给投递实现。"""

    if purpose.requires_verified_email and user.email_verified_at is None:
        raise OtpError("邮箱尚未验证，无法发送重置验证码", error_code="email_not_verified")

    code = generate_code()
    expires_at = utc_now() + timedelta(minutes=OTP_TTL_MINUTES)
    user.otp_hash = auth_service.hash_password(code)
    user.otp_expires_at = expires_at
    user.otp_attempts = 0
    user.updated_at = utc_now()
    await user.save()

    await _delivery.send(email=email or user.email, code=code, purpose=purpose, expires_at=expires_at)
    return code


def check_otp(user: User, code: str, *, now: datetime | None = None) -> tuple[bool, str | None]:
    """只校验不落库，返回 (是否通过, 失败原因)。"""

    if not user.otp_hash or not user.otp_expires_at:
        return False, "未找到验证码或验证码已失效"
    current = now or utc_now()
    if current > _as_aware(user.otp_expires_at):
        return False, "验证码已过期"
    if not auth_service.verify_password(code.strip(), user.otp_hash):
        return False, "验证码不正确"
    return True, None


def _clear_otp(user: User) -> None:
    user.otp_hash = None
    user.otp_expires_at = None
    user.otp_attempts = 0
    user.updated_at = utc_now()


async def verify_otp(user: User, code: str) -> None:
    """校验通过后清除验证码，失败抛出 OtpError。

    连续输错 OTP_MAX_ATTEMPTS 次后验证码作废，之后即使输入正确也需要重新获取。
    """

    ok, error = check_otp(user, code)
    if not ok:
        if user.otp_hash:
            user.otp_attempts += 1
            if user.otp_attempts >= OTP_MAX_ATTEMPTS:
                _clear_otp(user)
                error = "验证码输错次数过多，请重新获取"
            else:
                user.updated_at = utc_now()
            await user.save()
        logger.warning("验证码校验失败: email=%s reason=%s", user.email, error)
        raise OtpError(error)

    _clear_otp(user)
    await user.save()


async def mark_email_verified(user: User) -> None:
    user.email_verified_at = utc_now()
    user.updated_at = utc_now()
    await user.save()
    logger.info("用户 %s 已完成邮箱验证", user.email)
