import uuid
from decimal import Decimal

import pytest

from models import AuditLog
from services.audit import audit_logs_query, log_action
from services.errors import ForbiddenError


async def test_log_action_serialises_metadata(world):
    entry = await log_action(world.super.user_id, "TEST", "Thing", uuid.UUID(int=7), {
        "amount": Decimal("12.50"),
        "ref": uuid.UUID(int=1),
    })
    stored = await AuditLog.get(id=entry.id)
    assert stored.entity_id == str(uuid.UUID(int=7))
    assert stored.metadata["amount"] == 12.5
    assert stored.metadata["ref"] == str(uuid.UUID(int=1))


async def test_log_action_never_raises(world, monkeypatch, caplog):
    async def _down(*args, **kwargs):
        raise ConnectionError("audit store unavailable")
    monkeypatch.setattr(AuditLog, "create", _down)

    assert await log_action(world.super.user_id, "TEST", "Thing", "1") is None
    assert "audit write failed" in caplog.text


async def test_audit_logs_follow_the_acting_user(world):
    await log_action(world.board_admin.user_id, "A", "E", "1")
    await log_action(world.super.user_id, "B", "E", "2")
    await log_action(None, "SYSTEM", "E", "3")

    assert await audit_logs_query(world.super).count() == 3
    assert [e.action for e in await audit_logs_query(world.auditor)] == ["A"]

    with pytest.raises(ForbiddenError):
        audit_logs_query(world.agent)
    with pytest.raises(ForbiddenError):
        audit_logs_query(world.board_admin)
