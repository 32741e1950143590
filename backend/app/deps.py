from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.core.security import InvalidToken, user_id_from_token
from app.core.settings import settings
from app.db.session import get_db
from app.models.user import Role, User
from app.services.authorization import Caller, caller_for_user
from app.services.events import EventBus


def get_current_user(
    db: Session = Depends(get_db), authorization: str | None = Header(default=None)
) -> User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = authorization.split(" ", 1)[1].strip()
    try:
        user_id = user_id_from_token(token, secret=settings.secret_key, alg=settings.jwt_alg)
    except InvalidToken:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Inactive user")
    return user


def require_roles(*roles: Role):
    def _inner(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    return _inner


require_admin = require_roles(Role.admin)


def get_caller(
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    x_request_id: str | None = Header(default=None),
) -> Caller:
    return caller_for_user(
        db,
        user,
        request_id=x_request_id,
        ip_address=request.client.host if request.client else None,
    )


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus
