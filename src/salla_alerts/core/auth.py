"""JWTs for the merchant account API.

A token names the Salla user (by email) and, when it was issued at the end of an OAuth
callback, the store that was just connected. Passthrough routes use that store when the
request names none.
"""

from datetime import UTC, datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from salla_alerts.core.dependencies import get_app_settings

security = HTTPBearer()


class TokenData(BaseModel):
    """Claims of a validated account token."""

    email: str
    merchant: Optional[int] = None
    exp: datetime

    def store_for(self, merchant: Optional[int]) -> Optional[int]:
        """The store a request targets: its own choice, else the token's store."""
        return merchant if merchant is not None else self.merchant


def create_access_token(email: str, merchant: Optional[int] = None) -> str:
    """Create a new JWT access token for a merchant user."""
    settings = get_app_settings()
    expire = datetime.now(UTC) + timedelta(minutes=settings.jwt_access_token_expire_minutes)
    to_encode: dict = {"sub": email, "exp": expire}
    if merchant is not None:
        to_encode["merchant"] = merchant
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> TokenData:
    """Validate the bearer token and return its claims."""
    settings = get_app_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        # jose checks the expiry itself
        payload = jwt.decode(
            credentials.credentials,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require_exp": True, "require_sub": True},
        )
        return TokenData(
            email=payload["sub"],
            merchant=payload.get("merchant"),
            exp=datetime.fromtimestamp(payload["exp"], tz=UTC),
        )
    except (JWTError, ValidationError):
        raise credentials_exception
