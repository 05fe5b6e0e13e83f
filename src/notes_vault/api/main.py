# Notes Vault: FastAPI Backend
#
# Local REST API used by the desktop UI for attachment storage and
# backup/restore. Binds to localhost only; every route needs the session
# token issued at startup.

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from .. import __version__
from ..core.audit_log import EventType, audit
from ..services import get_services
from .backup_routes import router as backup_router
from .blob_routes import router as blob_router
from .security import issue_session_token

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = get_services()
    services.startup()
    if app.state.session_token is None:
        issue_session_token(app)
    audit(EventType.SYSTEM_START, "Notes Vault API starting", {"version": __version__})
    yield
    services.shutdown()
    audit(EventType.SYSTEM_STOP, "Notes Vault API stopped")


app = FastAPI(
    title="Notes Vault API",
    description="Attachment storage and encrypted backup/restore for the notes app",
    version=__version__,
    lifespan=lifespan,
)
app.state.session_token = None

app.include_router(blob_router)
app.include_router(backup_router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": __version__}


def start_api_server(host: str = "127.0.0.1", port: int = 8000):
    """
    Start FastAPI server.

    Args:
        host: Host to bind to (default: localhost only)
        port: Port to listen on
    """
    issue_session_token(app)
    logger.info("Session token issued for this backend instance")
    uvicorn.run(app, host=host, port=port, log_level="info")
