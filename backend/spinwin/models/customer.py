"""
顾客与奖品（由转盘子系统维护，这里只保留券服务需要关联的字段）
"""
from sqlalchemy import Column, String, DateTime, Text, Index
from spinwin.core.database import Base
from spinwin.core.timeutil import utcnow
import uuid


def _new_id() -> str:
    return str(uuid.uuid4())


class Customer(Base):
    """顾客表"""
    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(64), nullable=False)
    phone = Column(String(32), nullable=False)
    name = Column(String(128), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_customers_tenant_phone", "tenant_id", "phone"),
    )


class Prize(Base):
    """奖品表"""
    __tablename__ = "prizes"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(128), nullable=False)
    description = Column(Text, nullable=True)
