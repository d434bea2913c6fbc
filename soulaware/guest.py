import uuid

from starlette.requests import Request

GUEST_COOKIE_NAME = "guest_id"
GUEST_COOKIE_MAX_AGE = 60 * 60 * 24 * 365


class GuestIdentityError(ValueError):
    """The request carries no guest cookie."""


def new_guest_id() -> str:
    return str(uuid.uuid4())


def read_guest_id(request: Request) -> str:
    # The cookie middleware stores the id it issued on this request
    guest_id = getattr(request.state, "guest_id", None) or request.cookies.get(GUEST_COOKIE_NAME)
    if not guest_id:
        raise GuestIdentityError("Guest session is missing. Refresh and try again.")
    return guest_id


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.headers.get("x-real-ip") or "unknown"
