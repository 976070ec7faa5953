"""
券数据模型
一次中奖转盘对应一张券，券码在租户内唯一
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, ForeignKey,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from spinwin.core.database import Base
from spinwin.core.timeutil import utcnow
import uuid


def _new_id() -> str:
    return str(uuid.uuid4())


class Voucher(Base):
    """券表"""
    __tablename__ = "vouchers"

    id = Column(String(36), primary_key=True, default=_new_id)

    # 券码，格式 XXXX-XXXXXXXXXXXX，(tenant_id, code) 唯一
    code = Column(String(17), nullable=False)
    tenant_id = Column(String(64), nullable=False, index=True)

    # 来源：转盘记录（一对一）、奖品、顾客
    spin_id = Column(String(64), nullable=False, unique=True)
    prize_id = Column(String(36), ForeignKey("prizes.id"), nullable=False)
    user_id = Column(String(36), ForeignKey("customers.id"), nullable=False)

    expires_at = Column(DateTime, nullable=False)

    # 核销次数：0 <= redemption_count <= redemption_limit
    redemption_limit = Column(Integer, nullable=False, default=1)
    redemption_count = Column(Integer, nullable=False, default=0)
    is_redeemed = Column(Boolean, nullable=False, default=False)

    # 首次核销时间；最近一次核销的商户
    redeemed_at = Column(DateTime, nullable=True)
    redeemed_by = Column(String(64), nullable=True)

    # 管理员作废
    voided_at = Column(DateTime, nullable=True)
    voided_by = Column(String(64), nullable=True)

    # 二维码图片（异步生成，允许为空）
    qr_requested = Column(Boolean, nullable=False, default=False)
    qr_image_url = Column(String(512), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    prize = relationship("Prize")
    customer = relationship("Customer")

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_voucher_tenant_code"),
        CheckConstraint("redemption_limit > 0", name="ck_voucher_limit_positive"),
        CheckConstraint(
            "redemption_count >= 0 AND redemption_count <= redemption_limit",
            name="ck_voucher_count_bounds",
        ),
        Index("ix_vouchers_tenant_created", "tenant_id", "created_at"),
    )

    def __repr__(self):
        return f"<Voucher(code={self.code}, count={self.redemption_count}/{self.redemption_limit})>"


class VoucherRedemption(Base):
    """核销流水（每次成功核销追加一条，与计数更新同一事务）"""
    __tablename__ = "voucher_redemptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    voucher_id = Column(String(36), ForeignKey("vouchers.id", ondelete="RESTRICT"), nullable=False, index=True)
    tenant_id = Column(String(64), nullable=False, index=True)
    merchant_id = Column(String(64), nullable=False)

    # 本次核销后的累计次数
    redemption_number = Column(Integer, nullable=False)
    redeemed_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("voucher_id", "redemption_number", name="uq_redemption_voucher_number"),
    )

    def __repr__(self):
        return f"<VoucherRedemption(voucher_id={self.voucher_id}, n={self.redemption_number})>"
