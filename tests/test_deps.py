import pytest
from fastapi import HTTPException
from jose import jwt

from deps import get_current_admin, get_current_caller, get_current_consumer
from models import Role
from services import config
from services.scope import AdminCaller, ConsumerCaller


def _token(sub, typ="user", secret=None):
    return jwt.encode({"sub": sub, "typ": typ}, secret or config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


async def test_user_token_resolves_admin_caller(world):
    caller = await get_current_caller(_token("bob-board_admin"))
    assert isinstance(caller, AdminCaller)
    assert caller.role is Role.BOARD_ADMIN
    assert (caller.state_id, caller.board_id) == (world.s1.id, world.b1.id)
    assert caller.user_id == world.board_admin.user_id


async def test_consumer_token_resolves_consumer_caller(world):
    caller = await get_current_caller(_token("idp-asha", typ="consumer"))
    assert caller == ConsumerCaller(world.c1.id, world.s1.id, world.b1.id)
    assert await get_current_consumer(caller) is caller
    with pytest.raises(HTTPException) as exc:
        await get_current_admin(caller)
    assert exc.value.status_code == 403


@pytest.mark.parametrize("token", [
    "not-a-jwt",
    _token("bob-board_admin", secret="wrong-secret"),
    _token("bob-board_admin", typ="robot"),
])
async def test_bad_tokens_are_unauthorized(world, token):
    with pytest.raises(HTTPException) as exc:
        await get_current_caller(token)
    assert exc.value.status_code == 401


async def test_unregistered_identity_is_forbidden(world):
    with pytest.raises(HTTPException) as exc:
        await get_current_caller(_token("stranger"))
    assert exc.value.status_code == 403
