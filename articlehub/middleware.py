import logging
import time

import jwt
from starlette.types import ASGIApp, Receive, Scope, Send

from articlehub.config import Settings
from articlehub.security import decode_access_token

logger = logging.getLogger(__name__)

# Keys written into the ASGI scope state (readable as ``request.state.<key>``).
TOKEN_SUBJECT_STATE_KEY = "token_subject"
AUTH_ERROR_STATE_KEY = "auth_error"


def _bearer_token(scope: Scope) -> str | None:
    for name, value in scope.get("headers", []):
        if name == b"authorization":
            scheme, _, token = value.decode("latin-1").partition(" ")
            if scheme.lower() == "bearer" and token.strip():
                return token.strip()
            return None
    return None


def resolve_token_subject(token: str, settings: Settings) -> str:
    """
    Return the user id (``sub``) of a verified Bearer token.

    Raises ValueError when the signature, expiry or payload is not
    acceptable.  Only the subject is taken from the token; the role is
    read from the account on every request.
    """
    try:
        payload = decode_access_token(token, settings)
    except jwt.PyJWTError as exc:
        raise ValueError("Invalid or expired token") from exc
    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub:
        raise ValueError("Invalid token payload")
    return sub


# ---------------------------------------------------------------------------
# Middleware (pure ASGI; no BaseHTTPMiddleware child task)
# ---------------------------------------------------------------------------

class RequesterContextMiddleware:
    """
    Pure ASGI middleware that verifies the ``Authorization: Bearer`` token
    once per request and stores the outcome in the scope state:

    - ``token_subject``: the user id the token was issued for, or ``None``
      for a guest or a rejected token.
    - ``auth_error``: why a supplied token was rejected, else ``None``.

    ``dependencies.get_requester`` loads that account and turns it into a
    ``RequesterContext``; nothing below the router layer looks at the
    request.
    """

    def __init__(self, app: ASGIApp, settings: Settings) -> None:
        self.app = app
        self.settings = settings

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        subject: str | None = None
        auth_error: str | None = None
        token = _bearer_token(scope)
        if token is not None:
            try:
                subject = resolve_token_subject(token, self.settings)
            except ValueError as exc:
                auth_error = str(exc)
                logger.debug("Rejected bearer token: %s", auth_error)

        state = scope.setdefault("state", {})
        state[TOKEN_SUBJECT_STATE_KEY] = subject
        state[AUTH_ERROR_STATE_KEY] = auth_error
        await self.app(scope, receive, send)


class TimingMiddleware:
    """
    Pure ASGI middleware that adds ``X-Response-Time-Ms`` (wall-clock time
    for the whole request) and logs one line per request at DEBUG.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                duration_ms = round((time.perf_counter() - start) * 1000, 2)
                headers = list(message.get("headers", []))
                headers.append((b"x-response-time-ms", str(duration_ms).encode()))
                message["headers"] = headers
                logger.debug(
                    "%s %s -> %s in %.2f ms",
                    scope["method"], scope["path"], message["status"], duration_ms,
                )
            await send(message)

        await self.app(scope, receive, send_wrapper)
