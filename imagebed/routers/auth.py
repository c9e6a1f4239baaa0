import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from imagebed.auth import (
    check_password,
    clear_session_cookie,
    create_session_token,
    get_settings,
    set_session_cookie,
)
from imagebed.config import Settings
from imagebed.models import LoginRequest, OkResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=OkResponse)
async def login(request: Request, response: Response, settings: Settings = Depends(get_settings)):
    """Any body that does not carry a string password is a wrong password."""
    try:
        password = LoginRequest.model_validate(await request.json()).password
    except ValueError:
        password = None

    if not check_password(password, settings):
        logger.warning("Rejected admin login attempt")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Wrong password")

    set_session_cookie(response, create_session_token(settings), settings)
    return OkResponse()


@router.post("/logout", response_model=OkResponse)
async def logout(response: Response, settings: Settings = Depends(get_settings)):
    clear_session_cookie(response, settings)
    return OkResponse()
