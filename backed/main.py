"""FastAPI application entry point."""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from backed.core.config import settings
from backed.core.rate_limit import limiter
from backed.db.session import engine

logger = logging.getLogger(__name__)

# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="BackED API",
    description="Alumni crowdfunding for school projects",
    version=settings.VERSION,
    docs_url="/docs" if settings.ENV == "dev" else None,
    redoc_url="/redoc" if settings.ENV == "dev" else None,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware - must be added before routers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# ============================================================================
# Routers
# ============================================================================

from backed.routers import chat, donations, engagement, feed, notifications, projects, schools

# Alumni feed
app.include_router(feed.router, prefix="/feed", tags=["feed"])

# Projects (detail, funding, summary, school management)
app.include_router(projects.router, prefix="/projects", tags=["projects"])

# Donations (mixed paths: /projects/{id}/donations and /me/donations)
app.include_router(donations.router, tags=["donations"])

# School-side views
app.include_router(schools.router, prefix="/schools", tags=["schools"])

# Follows and bookmarks
app.include_router(engagement.router, tags=["engagement"])

# Notifications (user-scoped)
app.include_router(notifications.router, prefix="/me", tags=["notifications"])

# AI assistant
app.include_router(chat.router, prefix="/chat", tags=["ai"])

if not settings.ai_configured:
    logger.info("AI provider not configured; summaries and chat use fallbacks")


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
def health():
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return {
        "status": "ok",
        "env": settings.ENV,
        "version": settings.VERSION,
        "ai_configured": settings.ai_configured,
    }
