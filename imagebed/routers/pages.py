from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse

from imagebed.auth import require_page_session

router = APIRouter(tags=["pages"], default_response_class=HTMLResponse)

PAGE = """<!doctype html>
<html lang="en">
<head><meta charset="utf-8"><title>{title} - Imagebed</title></head>
<body><main id="root" data-page="{page}"><h1>{title}</h1>{body}</main></body>
</html>
"""

LOGIN_FORM = """
<form id="login-form" data-endpoint="/auth/login">
  <input type="password" name="password" autocomplete="current-password" required>
  <button type="submit">Sign in</button>
</form>
"""


def render(page: str, title: str, body: str = "") -> str:
    return PAGE.format(page=page, title=title, body=body)


@router.get("/")
async def home():
    return render("home", "Imagebed", '<a href="/gallery">Gallery</a> <a href="/upload">Upload</a>')


@router.get("/login")
async def login_page():
    return render("login", "Sign in", LOGIN_FORM)


@router.get("/gallery", dependencies=[Depends(require_page_session)])
async def gallery_page():
    return render("gallery", "Gallery")


@router.get("/upload", dependencies=[Depends(require_page_session)])
async def upload_page():
    return render("upload", "Upload")
