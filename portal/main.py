"""Portal Backend API.

FastAPI application providing REST API for:
- Projects and tasks (filtering, sorting, saved views)
- Chat (conversations, messages, reactions, realtime socket)
- In-app notifications and scheduled WhatsApp/email reminders
- Billing (invoices and payment status)
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from portal import __version__
from portal.config import get_config
from portal.db import close_db, init_db
from portal.errors import PortalError
from portal.routers import billing, chat, health, jobs, notifications, projects, tasks

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup, release the engine on shutdown."""
    config = get_config()
    await init_db()
    logger.info(f"Portal API started for {config.site_url}")
    yield
    await close_db()
    logger.info("Portal API shutdown.")


app = FastAPI(
    title="Portal API",
    description="Projects, chat, notifications and billing",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[get_config().site_url, "http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    """Service-layer errors become HTTP errors with the matching status code."""
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(projects.router, prefix="/api/projects", tags=["Projects"])
app.include_router(tasks.router, prefix="/api/tasks", tags=["Tasks"])
app.include_router(chat.router, prefix="/api/chat", tags=["Chat"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])
app.include_router(billing.router, prefix="/api/billing", tags=["Billing"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["Jobs"])


@app.get("/")
async def root():
    return {
        "name": "Portal API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }
