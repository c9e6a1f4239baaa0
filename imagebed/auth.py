"""
Admin session handling.

There is one administrator and one password. A successful login yields a
signed JWT kept in an http-only cookie; every protected route verifies it.
"""
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

from fastapi import Depends, Header, HTTPException, Request, Response, status
from jose import JWTError, jwt

from imagebed.config import Settings
from imagebed.errors import AuthConfigError

SESSION_COOKIE_NAME = "imagebed_session"
ALGORITHM = "HS256"


class LoginRequired(Exception):
    """Raised by page guards; rendered as a redirect to the login page."""

    def __init__(self, next_path: str):
        self.next_path = next_path

    @property
    def location(self) -> str:
        return "/login?" + urlencode({"from": self.next_path})


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def _secret(settings: Settings) -> str:
    if not settings.SESSION_SECRET:
        raise AuthConfigError("Missing SESSION_SECRET")
    return settings.SESSION_SECRET


def check_password(password: Optional[str], settings: Settings) -> bool:
    if not settings.ADMIN_PASSWORD:
        raise AuthConfigError("Missing ADMIN_PASSWORD")
    if not password:
        return False
    return secrets.compare_digest(password.encode("utf-8"), settings.ADMIN_PASSWORD.encode("utf-8"))


def create_session_token(settings: Settings, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    claims = {
        "role": "admin",
        "iat": now,
        "exp": now + timedelta(days=settings.SESSION_DAYS),
    }
    return jwt.encode(claims, _secret(settings), algorithm=ALGORITHM)


def verify_session_token(token: str, settings: Settings) -> bool:
    """True when the token is signed with the current secret and not expired."""
    try:
        payload = jwt.decode(token, _secret(settings), algorithms=[ALGORITHM])
    except JWTError:
        return False
    return payload.get("role") == "admin"


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=60 * 60 * 24 * settings.SESSION_DAYS,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value="",
        max_age=0,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def _request_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token and authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            token = parts[1]
    return token


def is_authed(request: Request, settings: Settings, authorization: Optional[str] = None) -> bool:
    token = _request_token(request, authorization)
    return bool(token) and verify_session_token(token, settings)


def require_session(
    request: Request,
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard for API routes."""
    if not is_authed(request, settings, authorization):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_page_session(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Guard for HTML pages, sends the browser to the login page instead of a 401."""
    if not is_authed(request, settings):
        raise LoginRequired(request.url.path)
