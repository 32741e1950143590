from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class InvalidToken(Exception):
    pass


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(
    *,
    subject: str,
    secret: str,
    alg: str,
    expires_minutes: int,
    extra: Optional[dict[str, Any]] = None,
) -> str:
    issued = datetime.now(timezone.utc)
    claims: dict[str, Any] = dict(extra or {})
    # registered claims win over anything passed in extra
    claims.update(
        sub=subject,
        iat=int(issued.timestamp()),
        exp=int((issued + timedelta(minutes=expires_minutes)).timestamp()),
    )
    return jwt.encode(claims, secret, algorithm=alg)


def decode_access_token(token: str, *, secret: str, alg: str) -> dict[str, Any]:
    return jwt.decode(token, secret, algorithms=[alg])


def user_id_from_token(token: str, *, secret: str, alg: str) -> int:
    """Return the user id carried in ``sub``; expired or tampered tokens raise InvalidToken."""
    try:
        claims = decode_access_token(token, secret=secret, alg=alg)
        return int(claims["sub"])
    except (JWTError, KeyError, TypeError, ValueError) as exc:
        raise InvalidToken(str(exc)) from exc
