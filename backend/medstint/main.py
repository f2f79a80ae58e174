import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medstint import __version__
from medstint.config import settings
from medstint.middleware.exceptions import register_exception_handlers
from medstint.routers import analytics, health, onboarding
from medstint.services.reaper import lifespan

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="MedStint Onboarding",
    description="Resumable, role-branching onboarding for the clinical education portal",
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
app.include_router(onboarding.router, prefix="/onboarding", tags=["onboarding"])
app.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
