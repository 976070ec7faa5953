"""
WhatsApp 通知
发券/核销后通知顾客。发送失败只记日志，不影响券状态。
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel
from spinwin.core.config import get_settings
import httpx
import logging

logger = logging.getLogger(__name__)


class NotificationPrize(BaseModel):
    name: str


class VoucherNotification(BaseModel):
    """发券通知内容"""
    code: str
    prize: NotificationPrize
    expires_at: datetime
    qr_image_url: Optional[str] = None


def format_phone_number(number: str, country_code: str) -> str:
    """没有国家码的号码补上默认国家码"""
    number = number.strip().lstrip("+")
    if number.startswith(country_code) or len(number) > 10:
        return number
    return f"{country_code}{number}"


def _format_date(value: datetime) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def build_voucher_message(notification: VoucherNotification) -> str:
    lines = [
        f"Congratulations! 🎉 You've won \"{notification.prize.name}\".",
        "",
        f"Your voucher code: *{notification.code}*",
        f"Valid until {_format_date(notification.expires_at)}",
    ]
    if notification.qr_image_url:
        lines += ["", f"QR code: {notification.qr_image_url}"]
    lines += ["", "Show this code at the counter to claim your prize!"]
    return "\n".join(lines)


def build_redemption_message(code: str, prize_name: str, redemption_count: int, redemption_limit: int) -> str:
    message = f"Your voucher *{code}* for \"{prize_name}\" has been redeemed."
    remaining = redemption_limit - redemption_count
    if remaining > 0:
        message += f" You can use it {remaining} more time(s)."
    return message + " Thank you!"


async def send_whatsapp_message(number: str, message: str) -> Optional[dict]:
    """
    调用 WhatsApp 网关发送消息

    配置缺失或发送失败时记录错误并返回 None，不抛出异常
    """
    settings = get_settings()
    if not settings.whatsapp_api_url or not settings.whatsapp_api_key or not settings.whatsapp_sender:
        logger.error("WhatsApp 配置缺失: API URL / API Key / Sender")
        return None

    formatted = format_phone_number(number, settings.whatsapp_country_code)
    payload = {
        "api_key": settings.whatsapp_api_key,
        "sender": settings.whatsapp_sender,
        "number": formatted,
        "message": message,
    }
    try:
        async with httpx.AsyncClient() as client:
            r = await client.post(
                settings.whatsapp_api_url,
                json=payload,
                timeout=settings.whatsapp_timeout_seconds,
            )
            r.raise_for_status()
            logger.info(f"WhatsApp 消息已发送: {formatted}")
            return r.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"WhatsApp 消息发送失败 {formatted}: {e}")
        return None


async def send_voucher_notification(notification: VoucherNotification, phone: str) -> Optional[dict]:
    result = await send_whatsapp_message(phone, build_voucher_message(notification))
    if result is not None:
        logger.info(f"发券通知已发送: {notification.code}")
    return result


async def send_redemption_confirmation(
    phone: str,
    code: str,
    prize_name: str,
    redemption_count: int,
    redemption_limit: int,
) -> Optional[dict]:
    message = build_redemption_message(code, prize_name, redemption_count, redemption_limit)
    return await send_whatsapp_message(phone, message)
