from datetime import datetime, timedelta, timezone

import jwt

from booking_engine.core import config

OAUTH_STATE_PURPOSE = "calendar_oauth"


def create_access_token(
    subject: str,
    tenant_id: str,
    role: str = "client",
    expires_minutes: int | None = None,
) -> str:
    expire_minutes = expires_minutes or config.JWT_EXPIRES_MINUTES
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    payload = {
        "sub": subject,
        "tenant_id": tenant_id,
        "role": role,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])


def create_state_token(tenant_id: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=config.OAUTH_STATE_EXPIRES_MINUTES)
    payload = {"tenant_id": tenant_id, "purpose": OAUTH_STATE_PURPOSE, "exp": expire}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_state_token(token: str) -> str:
    payload = jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    if payload.get("purpose") != OAUTH_STATE_PURPOSE or not payload.get("tenant_id"):
        raise jwt.InvalidTokenError("Not a calendar OAuth state token")
    return payload["tenant_id"]
