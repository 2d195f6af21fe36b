from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError

from models import Consumer, Role, User
from services import config
from services.billing import BillingService
from services.retention import RetentionSweeper
from services.scope import AdminCaller, Caller, ConsumerCaller

# tokens are issued by the external identity provider; tokenUrl only feeds the OpenAPI docs
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def decode_token(token: str) -> dict:
    return jwt.decode(
        token,
        config.JWT_SECRET,
        algorithms=[config.JWT_ALGORITHM],
        audience=config.JWT_AUDIENCE,
        options={"verify_aud": config.JWT_AUDIENCE is not None},
    )


async def get_current_caller(token: str = Depends(oauth2_scheme)) -> Caller:
    cred_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token)
    except JWTError:
        raise cred_exc
    subject = payload.get("sub")
    kind = payload.get("typ", "user")
    if not subject or kind not in ("user", "consumer"):
        raise cred_exc

    if kind == "consumer":
        consumer = await Consumer.get_or_none(external_user_id=subject)
        if consumer is None:
            raise HTTPException(status_code=403, detail="No consumer registered for this identity")
        return ConsumerCaller(
            consumer_id=consumer.id,
            state_id=consumer.state_id,
            board_id=consumer.board_id,
        )

    user = await User.get_or_none(external_user_id=subject)
    if user is None:
        raise HTTPException(status_code=403, detail="No user registered for this identity")
    return AdminCaller(
        user_id=user.id,
        role=Role(user.role),
        state_id=user.state_id,
        board_id=user.board_id,
    )


async def get_current_admin(caller: Caller = Depends(get_current_caller)) -> AdminCaller:
    if not isinstance(caller, AdminCaller):
        raise HTTPException(status_code=403, detail="Administrative access required")
    return caller


async def get_current_consumer(caller: Caller = Depends(get_current_caller)) -> ConsumerCaller:
    if not isinstance(caller, ConsumerCaller):
        raise HTTPException(status_code=403, detail="Consumer access required")
    return caller


def get_billing_service() -> BillingService:
    return BillingService(config.DB_CONNECTION)


def get_retention_sweeper() -> RetentionSweeper:
    return RetentionSweeper(config.DB_CONNECTION)
