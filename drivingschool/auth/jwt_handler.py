from datetime import datetime, timedelta, timezone

import jwt

from drivingschool.core import config

STATE_TOKEN_TYPE = "oidc_state"


def create_access_token(subject: str, session_id: str, expires_minutes: int | None = None) -> str:
    expire_minutes = expires_minutes or config.SESSION_TTL_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {"sub": subject, "sid": session_id, "exp": expire, "iat": datetime.now(timezone.utc)}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])


def create_state_token(nonce: str, expires_minutes: int | None = None) -> str:
    expire_minutes = expires_minutes or config.OIDC_STATE_TTL_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {"typ": STATE_TOKEN_TYPE, "nonce": nonce, "exp": expire, "iat": datetime.now(timezone.utc)}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_state_token(token: str) -> dict:
    payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    if payload.get("typ") != STATE_TOKEN_TYPE:
        raise jwt.InvalidTokenError("Not a login state token")
    return payload
