"""
测试公共夹具
每个测试使用 tmp_path 下独立的 SQLite 文件库（并发核销测试需要多个连接共享同一个库）
"""
import os
import tempfile

_TMP = tempfile.mkdtemp(prefix="spinwin-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP}/spinwin.db"
os.environ["QR_STORAGE_PATH"] = os.path.join(_TMP, "qr")
os.environ["ADMIN_USERNAME"] = "admin"
os.environ["ADMIN_PASSWORD"] = "test-password"
os.environ["WHATSAPP_API_URL"] = ""
os.environ["WHATSAPP_API_KEY"] = ""
os.environ["WHATSAPP_SENDER"] = ""

from datetime import timedelta
from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import spinwin.models  # noqa: F401
from spinwin.core.database import Base, get_db, get_session_factory
from spinwin.core.security import reset_rate_limiter
from spinwin.core.timeutil import utcnow
from spinwin.models import Customer, Prize, Voucher

TENANT = "tenant-acme"
OTHER_TENANT = "tenant-globex"


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    reset_rate_limiter()
    yield
    reset_rate_limiter()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/vouchers.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seed(session_factory):
    """两个租户各一位顾客、一个奖品"""
    async with session_factory() as session:
        alice = Customer(id="cust-alice", tenant_id=TENANT, phone="9876543210", name="Alice")
        bob = Customer(id="cust-bob", tenant_id=TENANT, phone="9123456780", name="Bob")
        carol = Customer(id="cust-carol", tenant_id=OTHER_TENANT, phone="9876543210", name="Carol")
        coffee = Prize(id="prize-coffee", tenant_id=TENANT, name="Free Coffee", description="Any size")
        cake = Prize(id="prize-cake", tenant_id=OTHER_TENANT, name="Cheesecake")
        session.add_all([alice, bob, carol, coffee, cake])
        await session.commit()

    return SimpleNamespace(
        tenant_id=TENANT,
        other_tenant_id=OTHER_TENANT,
        alice_id="cust-alice",
        bob_id="cust-bob",
        carol_id="cust-carol",
        prize_id="prize-coffee",
        other_prize_id="prize-cake",
    )


@pytest.fixture
def make_voucher(session_factory, seed):
    """直接写入一张券，字段可覆盖"""
    counter = {"n": 0}

    async def _make(code, **overrides):
        counter["n"] += 1
        now = utcnow()
        fields = dict(
            code=code,
            tenant_id=seed.tenant_id,
            spin_id=f"spin-{counter['n']}-{code}",
            prize_id=seed.prize_id,
            user_id=seed.alice_id,
            expires_at=now + timedelta(days=7),
            redemption_limit=1,
            redemption_count=0,
            is_redeemed=False,
            created_at=now,
        )
        fields.update(overrides)
        voucher = Voucher(**fields)
        async with session_factory() as session:
            session.add(voucher)
            await session.commit()
        return voucher

    return _make


@pytest_asyncio.fixture
async def client(session_factory, seed):
    from spinwin.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
