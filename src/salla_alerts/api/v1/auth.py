"""Authentication endpoints."""

from fastapi import APIRouter, Depends

from salla_alerts.core.auth import TokenData, get_current_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me")
async def read_current_user(
    user: TokenData = Depends(get_current_user),
) -> dict[str, str | int | None]:
    """Return the user the bearer token was issued to."""
    return {"email": user.email, "merchant": user.merchant, "token_expires": str(user.exp)}
