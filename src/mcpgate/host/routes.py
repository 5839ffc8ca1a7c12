# Built-in host pages: login, logout and home.
# Created: 2026-10-19
#
# A minimal stand-in for the host application whose accounts back the OAuth
# flow. Users come from settings.host_users.

from __future__ import annotations

import hmac
import html
import logging

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from mcpgate.config import Settings
from mcpgate.host.session import SESSION_COOKIE, SessionAuthContext, create_session_value

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Host"])

_PAGE = """<!DOCTYPE html>
<html><head><title>mcpgate</title>
<style>
body {{ font-family: system-ui; max-width: 420px; margin: 40px auto; padding: 20px; }}
input {{ display: block; width: 100%; margin: 8px 0 16px; padding: 8px; }}
.btn {{ padding: 10px 24px; border: none; border-radius: 6px; background: #2563eb; color: white; }}
.error {{ color: #b91c1c; }}
</style></head><body>{body}</body></html>"""

_LOGIN_FORM = """<h2>Sign in</h2>
{error}
<form method="POST" action="{action}">
<label>Username <input name="username" autocomplete="username"></label>
<label>Password <input name="password" type="password" autocomplete="current-password"></label>
<button type="submit" class="btn">Sign in</button>
</form>"""


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _check_password(settings: Settings, username: str, password: str) -> bool:
    expected = settings.host_users.get(username)
    if expected is None:
        return False
    return hmac.compare_digest(expected.encode(), password.encode())


def _login_page(action: str, error: str = "", status_code: int = 200) -> HTMLResponse:
    error_html = f'<p class="error">{html.escape(error)}</p>' if error else ""
    body = _LOGIN_FORM.format(error=error_html, action=html.escape(action))
    return HTMLResponse(_PAGE.format(body=body), status_code=status_code)


@router.get("/login")
async def login_form(request: Request):
    return _login_page(_settings(request).login_url)


@router.post("/login")
async def login_submit(request: Request, username: str = Form(""), password: str = Form("")):
    """Check credentials and set the session cookie."""
    settings = _settings(request)
    if not _check_password(settings, username, password):
        logger.info("Failed host login for %r", username)
        return _login_page(settings.login_url, "Invalid username or password", status_code=401)

    response = RedirectResponse(settings.home_path, status_code=303)
    response.set_cookie(
        key=SESSION_COOKIE,
        value=create_session_value(username, settings.secret_key, settings.session_ttl_hours),
        httponly=True,
        samesite="lax",
        path="/",
        max_age=settings.session_ttl_hours * 3600,
        secure=request.url.scheme == "https",
    )
    logger.info("Host login for %s", username)
    return response


@router.post("/logout")
async def logout(request: Request):
    response = RedirectResponse(_settings(request).login_url, status_code=303)
    response.delete_cookie(key=SESSION_COOKIE, path="/")
    return response


@router.get("/")
async def home(request: Request):
    settings = _settings(request)
    auth = SessionAuthContext(request, settings)
    if not auth.is_logged_in():
        body = f'<h2>mcpgate</h2><p><a href="{html.escape(settings.login_url)}">Sign in</a></p>'
    else:
        body = (
            f"<h2>mcpgate</h2><p>Signed in as <strong>{html.escape(auth.current_user_id())}"
            "</strong>.</p>"
            '<form method="POST" action="/logout"><button class="btn">Sign out</button></form>'
        )
    return HTMLResponse(_PAGE.format(body=body))
