"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pulse.config import settings
from pulse.database import Base, engine

# Import routers
from pulse.routers import users, events, rsvps, reports

# Import all models so Base.metadata knows about them
from pulse.models.user import User               # noqa: F401
from pulse.models.event import Event             # noqa: F401
from pulse.models.rsvp import EventRSVP          # noqa: F401
from pulse.models.event_mutation import EventMutation   # noqa: F401
from pulse.models.report import EventReport           # noqa: F401

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(
    title="Pulse Events",
    description="Internal company events: feed, capacity-limited RSVPs and waitlists",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(users.router, prefix="/api", tags=["Users"])
app.include_router(events.router, prefix="/api/events", tags=["Events"])
app.include_router(rsvps.router, prefix="/api/events", tags=["RSVPs"])
app.include_router(reports.router, prefix="/api/events", tags=["Reports"])


@app.on_event("startup")
def on_startup():
    """Create database tables on startup (for SQLite dev mode)."""
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)


@app.get("/api/health")
def health_check():
    return {"status": "ok"}
