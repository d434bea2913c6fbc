from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from soulaware.guest import GUEST_COOKIE_MAX_AGE, GUEST_COOKIE_NAME, new_guest_id


class GuestCookieMiddleware(BaseHTTPMiddleware):
    """Issues a `guest_id` cookie to browsers that do not carry one yet.

    Routes that rotate the id themselves (data deletion) set their own cookie,
    which is left untouched.
    """

    def __init__(self, app: ASGIApp, secure: bool = False):
        super().__init__(app)
        self.secure = secure

    async def dispatch(self, request: Request, call_next: Callable):
        issued = None
        if not request.cookies.get(GUEST_COOKIE_NAME):
            issued = new_guest_id()
            request.state.guest_id = issued

        response = await call_next(request)

        already_set = any(
            k == b"set-cookie" and v.startswith(f"{GUEST_COOKIE_NAME}=".encode())
            for k, v in response.raw_headers
        )
        if issued and not already_set:
            set_guest_cookie(response, issued, secure=self.secure)
        return response


def set_guest_cookie(response, guest_id: str, secure: bool = False) -> None:
    response.set_cookie(
        GUEST_COOKIE_NAME,
        guest_id,
        max_age=GUEST_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=secure,
        path="/",
    )
