"""Anonymous client identity carried in a cookie.

The engine only needs a stable opaque token per client; this middleware is
the boundary that hands one out and reads it back.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import FastAPI, Request

from song_tasks.config.settings import Settings
from song_tasks.engine.ownership import new_identity_token

logger = logging.getLogger(__name__)

MAX_TOKEN_LENGTH = 256


def install_identity_middleware(app: FastAPI, settings: Settings) -> None:
    max_age = int(timedelta(hours=settings.identity_ttl_hours).total_seconds())
    cookie_name = settings.identity_cookie_name

    @app.middleware("http")
    async def assign_identity(request: Request, call_next):
        token = request.cookies.get(cookie_name, "").strip()
        issued = False
        if not token or len(token) > MAX_TOKEN_LENGTH:
            token = new_identity_token()
            issued = True
            logger.info("identity event=issued path=%s", request.url.path)
        request.state.identity_token = token

        response = await call_next(request)
        if issued:
            response.set_cookie(
                cookie_name,
                token,
                max_age=max_age,
                httponly=True,
                secure=settings.identity_cookie_secure,
                samesite="strict",
                path="/",
            )
        return response


def identity_token_from(request: Request) -> str | None:
    return getattr(request.state, "identity_token", None)
