"""
券二维码图片
生成 400x400 PNG（纠错级别 M），保存到本地目录并通过静态文件路由对外提供。
生成失败时 qr_image_url 保持为空，不影响券的可用性。
"""
from typing import Optional
from PIL import Image
from sqlalchemy.ext.asyncio import async_sessionmaker
from spinwin.core.config import get_settings
from spinwin.services import voucher_store
import asyncio
import io
import logging
import os
import qrcode

logger = logging.getLogger(__name__)

QR_IMAGE_SIZE = 400


def generate_qr_png(content: str, size: int = QR_IMAGE_SIZE) -> bytes:
    """生成二维码 PNG 字节"""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(content)
    qr.make(fit=True)
    raw = io.BytesIO()
    qr.make_image(fill_color="black", back_color="white").save(raw)
    raw.seek(0)

    img = Image.open(raw).convert("L")
    img = img.resize((size, size), Image.Resampling.NEAREST)

    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def save_qr_image(voucher_id: str, code: str) -> str:
    """生成并保存二维码，返回对外访问地址"""
    settings = get_settings()
    os.makedirs(settings.qr_storage_path, exist_ok=True)
    filename = f"{voucher_id}.png"
    with open(os.path.join(settings.qr_storage_path, filename), "wb") as f:
        f.write(generate_qr_png(code))
    return f"{settings.qr_public_base_url.rstrip('/')}/{filename}"


async def attach_qr_image(
    session_factory: async_sessionmaker,
    voucher_id: str,
    tenant_id: str,
    code: str,
) -> Optional[str]:
    """为券生成二维码并写回地址；失败返回 None"""
    try:
        url = await asyncio.to_thread(save_qr_image, voucher_id, code)
    except (OSError, ValueError) as e:
        logger.error(f"二维码生成失败 {code}: {e}")
        return None

    async with session_factory() as db:
        await voucher_store.set_qr_image_url(db, tenant_id, voucher_id, url)
    logger.info(f"二维码已生成: {code} -> {url}")
    return url


async def backfill_missing_qr_images(session_factory: async_sessionmaker) -> int:
    """补生成缺失的二维码（例如首次生成失败的券），返回成功数量"""
    settings = get_settings()
    async with session_factory() as db:
        pending = await voucher_store.find_missing_qr(db, settings.qr_backfill_batch_size)

    done = 0
    for voucher_id, tenant_id, code in pending:
        if await attach_qr_image(session_factory, voucher_id, tenant_id, code):
            done += 1
    if pending:
        logger.info(f"二维码补生成: {done}/{len(pending)}")
    return done
