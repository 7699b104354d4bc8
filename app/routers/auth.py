from typing import Optional

from fastapi import APIRouter, Body, Depends, Request, Response, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.dependencies.auth import get_current_user, get_optional_user, get_token_payload
from app.dependencies.rate_limit import (
    LOGIN_LIMIT, OTP_REQUEST_LIMIT, OTP_VERIFY_LIMIT, PASSWORD_RESET_LIMIT, REGISTER_LIMIT,
    attempt_limit, enforce_attempt_limit, enforce_brute_force_guard, user_attempt_limit, user_rate_limit,
)
from app.models.user import User
from app.schemas.auth import (
    ForgotPasswordRequest, LoginRequest, OTPRequest, OTPVerifyRequest,
    RefreshTokenRequest, RegisterRequest, ResetPasswordRequest,
)
from app.schemas.common import ErrorResponse
from app.services.auth_service import AuthService
from app.services.token_service import TokenService
from app.utils.errors import TokenExpiredError, InvalidTokenError, ValidationError
from app.utils.helpers import format_response, get_client_ip, get_user_agent

router = APIRouter(
    prefix="/api/auth",
    tags=["authentication"],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)

COOKIE_PATH = "/api/auth"


def _set_refresh_cookie(response: Response, refresh_token: str) -> None:
    response.set_cookie(
        key=settings.REFRESH_COOKIE_NAME,
        value=refresh_token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 3600,
        httponly=True,
        secure=settings.ENV not in ("local", "test"),
        samesite="strict",
        path=COOKIE_PATH,
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(key=settings.REFRESH_COOKIE_NAME, path=COOKIE_PATH)


def _auth_result(result: dict, response: Response) -> dict:
    _set_refresh_cookie(response, result["tokens"]["refreshToken"])
    return format_response({
        "user": result["user"].to_dict(),
        "tokens": result["tokens"],
        "sessionId": result["sessionId"],
    })


def _refresh_token_from(request: Request, payload: Optional[RefreshTokenRequest]) -> Optional[str]:
    if payload and payload.refresh_token:
        return payload.refresh_token
    return request.cookies.get(settings.REFRESH_COOKIE_NAME)


@router.post("/register", status_code=status.HTTP_201_CREATED, dependencies=[Depends(attempt_limit(REGISTER_LIMIT))])
async def register(
    payload: RegisterRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """
    Register with email/password
    - Create user + profile
    - Open the first session and return the token pair
    """
    result = AuthService.register(
        db=db,
        email=payload.email,
        password=payload.password,
        username=payload.username,
        first_name=payload.first_name,
        last_name=payload.last_name,
        role=payload.role.value,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return _auth_result(result, response)


@router.post("/login", dependencies=[Depends(attempt_limit(LOGIN_LIMIT))])
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """
    Email/password login
    - Per-IP failure limit runs as a dependency, the per-email lock here
    - 2FA accounts on a new device get `requiresOtp` instead of tokens
    """
    enforce_brute_force_guard(request, db, payload.email)
    result = AuthService.login(
        db=db,
        email=payload.email,
        password=payload.password,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    if result.get("requiresOtp"):
        return format_response(result)
    return _auth_result(result, response)


@router.post("/refresh")
async def refresh(
    request: Request,
    response: Response,
    payload: Optional[RefreshTokenRequest] = Body(None),
    db: Session = Depends(get_db),
):
    """Rotate the refresh token: the old session is revoked, a new one is opened."""
    refresh_token = _refresh_token_from(request, payload)
    if not refresh_token:
        raise ValidationError("Refresh token is required", code="MISSING_TOKEN")
    try:
        result = AuthService.refresh(
            db=db,
            refresh_token=refresh_token,
            ip_address=get_client_ip(request),
            user_agent=get_user_agent(request),
        )
    except TokenExpiredError:
        # Expired and malformed tokens are indistinguishable to the caller.
        raise InvalidTokenError()
    return _auth_result(result, response)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    payload: Optional[RefreshTokenRequest] = Body(None),
    db: Session = Depends(get_db),
):
    """Revoke the session of the presented refresh token. Always succeeds."""
    result = AuthService.logout(db=db, refresh_token=_refresh_token_from(request, payload))
    _clear_refresh_cookie(response)
    return format_response(result)


@router.post("/logout-all")
async def logout_all(
    response: Response,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Revoke every session of the caller."""
    result = AuthService.logout_all(db=db, user_id=current_user.id)
    _clear_refresh_cookie(response)
    return format_response(result)


@router.post("/forgot-password")
async def forgot_password(
    payload: ForgotPasswordRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """Request a password reset email. The answer never reveals whether the email exists."""
    enforce_attempt_limit(PASSWORD_RESET_LIMIT, request, response, db, email=payload.email)
    result = AuthService.send_password_reset(
        db=db,
        email=payload.email,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return format_response(result)


@router.post("/reset-password")
async def reset_password(
    payload: ResetPasswordRequest,
    db: Session = Depends(get_db),
):
    """Reset password using the single-use token sent by email."""
    result = AuthService.reset_password(db=db, token=payload.token, new_password=payload.password)
    return format_response(result)


@router.post("/request-otp")
async def request_otp(
    payload: OTPRequest,
    request: Request,
    current_user: User = Depends(user_attempt_limit(OTP_REQUEST_LIMIT, get_current_user)),
    db: Session = Depends(get_db),
):
    """Send a 6-digit code for the requested purpose."""
    result = AuthService.request_otp(
        db=db,
        user=current_user,
        purpose=payload.type,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    return format_response(result)


@router.post("/verify-otp", dependencies=[Depends(attempt_limit(OTP_VERIFY_LIMIT))])
async def verify_otp(
    payload: OTPVerifyRequest,
    request: Request,
    response: Response,
    current_user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    """
    Verify a one-time code
    - the user is the bearer of the access token, or looked up by email
    - a verified 2fa code completes the pending login
    """
    user = current_user or AuthService.find_user_by_email(db, payload.email)
    result = AuthService.verify_otp(
        db=db,
        user=user,
        code=payload.code,
        purpose=payload.type,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )
    if "tokens" in result:
        data = _auth_result(result, response)
        data["data"]["purpose"] = result["purpose"]
        return data
    return format_response(result)


@router.get("/me", dependencies=[Depends(user_rate_limit("user"))])
async def me(current_user: User = Depends(get_current_user)):
    """Current user and profile."""
    return format_response({
        "user": current_user.to_dict(),
        "profile": current_user.profile.to_dict() if current_user.profile else None,
    })


@router.get("/sessions", dependencies=[Depends(user_rate_limit("user"))])
async def list_sessions(
    token: dict = Depends(get_token_payload),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Active sessions of the caller; the one behind this access token is flagged `isCurrent`."""
    sessions = TokenService.list_sessions(db, current_user.id)
    return format_response({"sessions": [s.to_dict(current_session_id=token.get("sid")) for s in sessions]})


@router.delete("/sessions/{session_id}", dependencies=[Depends(user_rate_limit("user"))])
async def revoke_session(
    session_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Revoke one of the caller's own sessions."""
    TokenService.revoke_session(db, current_user.id, session_id)
    return format_response({"message": "Session revoked successfully"})


@router.get("/health")
async def auth_health():
    return format_response({"message": "Auth service is healthy"})
