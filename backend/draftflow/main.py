
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from draftflow import __version__
from draftflow.config import settings
from draftflow.middleware.exceptions import register_exception_handlers
from draftflow.routers import health, reports
from draftflow.services.scheduler import lifespan

app = FastAPI(
    title="DraftFlow",
    description="Multi-section report drafts with auto-save and resume",
    version=__version__,
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(reports.router, prefix="/api/reports", tags=["reports"])
