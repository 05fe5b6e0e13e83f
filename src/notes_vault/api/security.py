"""Session-token guard for the local API.

The token is issued when the server starts, kept on ``app.state`` and handed
to the desktop UI, which sends it back in the X-Session-Token header. Other
processes on the machine can reach 127.0.0.1 but cannot read attachments or
trigger a restore without it.
"""

import secrets
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

SESSION_HEADER = "X-Session-Token"

session_header = APIKeyHeader(
    name=SESSION_HEADER,
    auto_error=False,
    description="Token issued to the desktop UI when the backend starts",
)


def issue_session_token(app: FastAPI) -> str:
    """Generate a fresh 256-bit token for ``app`` and return it."""
    token = secrets.token_urlsafe(32)
    app.state.session_token = token
    return token


async def require_session(
    request: Request,
    presented: Optional[str] = Security(session_header),
) -> None:
    """Router dependency: reject requests without the current session token."""
    expected = getattr(request.app.state, "session_token", None)
    if expected is None:
        raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Backend is still starting")
    if presented is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, f"Missing {SESSION_HEADER} header")
    if not secrets.compare_digest(presented.encode(), expected.encode()):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid session token")
