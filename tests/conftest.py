from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest
from tortoise import Tortoise

from models import (
    Board, Consumer, MeterReading, Role, SmartMeter, State, Tariff, TariffType, User,
)
from services.scope import AdminCaller, ConsumerCaller

UTC = timezone.utc
T0 = datetime(2026, 1, 1, tzinfo=UTC)


@pytest.fixture(autouse=True)
async def db():
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": ["models"]},
        use_tz=True,
        timezone="UTC",
    )
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


# ---------- factories ----------

async def make_state(code: str, name: str | None = None) -> State:
    return await State.create(code=code, name=name or f"State {code}")


async def make_board(state: State, code: str) -> Board:
    return await Board.create(state=state, code=code, name=f"Board {code}")


async def make_consumer(board: Board, name: str = "Asha", external_user_id: str | None = None) -> Consumer:
    return await Consumer.create(
        name=name,
        address="12 Grid Road",
        state_id=board.state_id,
        board_id=board.id,
        external_user_id=external_user_id,
    )


async def make_tariff(state: State, unit_rate="5.00", fixed_charge="100.00") -> Tariff:
    return await Tariff.create(
        state=state,
        type=TariffType.RESIDENTIAL,
        unit_rate=Decimal(unit_rate),
        fixed_charge=Decimal(fixed_charge),
        effective_from=T0 - timedelta(days=365),
    )


async def make_meter(consumer: Consumer, tariff: Tariff, number: str) -> SmartMeter:
    return await SmartMeter.create(meter_number=number, consumer=consumer, tariff=tariff)


async def add_readings(meter: SmartMeter, rows) -> None:
    """rows: (timestamp, consumption[, voltage[, current]])"""
    for row in rows:
        ts, consumption, *rest = row
        voltage = rest[0] if len(rest) > 0 else None
        current = rest[1] if len(rest) > 1 else None
        await MeterReading.create(meter=meter, timestamp=ts, consumption=consumption, voltage=voltage, current=current)


async def make_admin(role: Role, state: State | None = None, board: Board | None = None, name: str = "admin") -> AdminCaller:
    user = await User.create(
        name=name,
        external_user_id=f"{name}-{role.value.lower()}",
        role=role,
        state=state,
        board=board,
    )
    return AdminCaller(
        user_id=user.id,
        role=role,
        state_id=state.id if state else None,
        board_id=board.id if board else None,
    )


def consumer_caller(consumer: Consumer) -> ConsumerCaller:
    return ConsumerCaller(consumer_id=consumer.id, state_id=consumer.state_id, board_id=consumer.board_id)


@pytest.fixture
async def world():
    """
    Two states. S1 holds boards B1 and B1b, S2 holds B2.
    One consumer and one meter per board, each metered with three readings
    on T0 (1.0 + 2.5 + 0.5 kWh).
    """
    s1 = await make_state("S1")
    s2 = await make_state("S2")
    b1 = await make_board(s1, "B1")
    b1b = await make_board(s1, "B1B")
    b2 = await make_board(s2, "B2")

    c1 = await make_consumer(b1, "Asha", external_user_id="idp-asha")
    c1b = await make_consumer(b1b, "Bela")
    c2 = await make_consumer(b2, "Chen")

    t1 = await make_tariff(s1)
    t2 = await make_tariff(s2, unit_rate="4.00", fixed_charge="50.00")

    m1 = await make_meter(c1, t1, "M-1")
    m1b = await make_meter(c1b, t1, "M-1B")
    m2 = await make_meter(c2, t2, "M-2")
    for m in (m1, m1b, m2):
        await add_readings(m, [
            (T0 + timedelta(hours=1), 1.0, 230.0, 5.0),
            (T0 + timedelta(hours=2), 2.5, 232.0, 7.5),
            (T0 + timedelta(hours=3), 0.5),
        ])

    return SimpleNamespace(
        s1=s1, s2=s2, b1=b1, b1b=b1b, b2=b2,
        c1=c1, c1b=c1b, c2=c2,
        t1=t1, t2=t2,
        m1=m1, m1b=m1b, m2=m2,
        start=T0,
        end=T0 + timedelta(days=1),
        super=await make_admin(Role.SUPER_ADMIN, name="root"),
        state_admin=await make_admin(Role.STATE_ADMIN, state=s1, name="sam"),
        board_admin=await make_admin(Role.BOARD_ADMIN, state=s1, board=b1, name="bob"),
        agent=await make_admin(Role.SUPPORT_AGENT, state=s1, board=b1, name="ana"),
        auditor=await make_admin(Role.AUDITOR, state=s1, name="aud"),
    )


# ---------- HTTP ----------

@pytest.fixture
async def client():
    from main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def login():
    """Make every request run as the given caller."""
    from deps import get_current_caller
    from main import app

    def _login(caller):
        app.dependency_overrides[get_current_caller] = lambda: caller
    return _login
