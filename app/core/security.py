import hmac
from typing import Optional

from jose import JWTError, jwt
from app.core.config import settings


def decode_access_token(token: str) -> dict:
    """Verify an identity-provider access token and return its claims.

    Raises JWTError when the signature, expiry or audience does not check out.
    """
    options = {"verify_aud": bool(settings.AUTH_JWT_AUDIENCE)}
    return jwt.decode(
        token,
        settings.AUTH_JWT_SECRET,
        algorithms=[settings.AUTH_JWT_ALGORITHM],
        audience=settings.AUTH_JWT_AUDIENCE or None,
        options=options,
    )


def user_id_from_token(token: str) -> Optional[str]:
    try:
        claims = decode_access_token(token)
    except JWTError:
        return None
    sub = claims.get("sub")
    return str(sub) if sub else None


def verify_worker_secret(authorization: Optional[str]) -> bool:
    """Check `Authorization: Bearer <WORKER_SECRET>`.

    Outside development a secret is mandatory. In development an unset secret
    leaves the trigger open.
    """
    secret = settings.WORKER_SECRET
    if not secret:
        return not settings.requires_worker_secret
    expected = f"Bearer {secret}"
    return hmac.compare_digest((authorization or "").encode(), expected.encode())
