# routers/auth.py - Exchange an OSM request token for an API access token
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, TokenRequest, TokenResponse, ACCESS_TOKEN_EXPIRE_MINUTES,
    get_current_user,
)
from database import get_db_session
from logging_system import log_security, log_audit
from schemas import RequestToken, User
from user_dal import user_dal

router = APIRouter(prefix="/api/v2/auth", tags=["Authentication"])


def _build_token_response(user: User) -> TokenResponse:
    return TokenResponse(
        access_token=AuthService.token_for_user(user),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=user.to_public(),
    )


@router.post("/token", response_model=TokenResponse)
async def issue_token(
    request: TokenRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """Sign in with the OAuth token and secret stored for an OSM user"""
    request_token = RequestToken(token=request.token, secret=request.secret)
    if request.user_id is not None:
        user = await user_dal.match_by_request_token_and_id(request_token, request.user_id, db)
    else:
        user = await user_dal.match_by_request_token(request_token, db)

    if user is None:
        log_security("token_exchange_failed", metadata={"user_id": request.user_id})
        raise HTTPException(status_code=401, detail="Unknown request token")

    log_audit("sign_in", "session", user_id=str(user.id))
    return _build_token_response(user)


@router.get("/me")
async def get_current_user_info(user: User = Depends(get_current_user)):
    """Get current authenticated user information"""
    return {**user.to_public(), "is_super_user": user.is_super_user}
