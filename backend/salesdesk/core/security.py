from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from salesdesk.core.config import settings


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a bearer token issued by the auth service. Returns claims or None."""
    if not token:
        return None
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def account_id_from_claims(claims: Dict[str, Any]) -> Optional[str]:
    # The auth service puts the account id in `id`; older tokens used `sub`.
    raw = claims.get("id") or claims.get("sub")
    if raw is None:
        return None
    return str(raw)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Mint a token the same way the auth service does (used by scripts and tests)."""
    to_encode = dict(data)
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=30))
    to_encode["exp"] = expire
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
