import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .database import init_db
from .routers import dashboard, emails, imports, llm, negotiations, renewals, savings, subscriptions, vendors
from .schemas import HealthResponse
from .security import RequireAPIAuth

VERSION = "0.1.0"

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # ── Startup ───────────────────────────────────────────────────────────────
    init_db()
    yield
    # ── Shutdown (nothing needed for SQLite) ──────────────────────────────────


app = FastAPI(
    title="SaaSLens",
    description="SaaS spend tracking: CSV import, inbox subscription detection, renewals and negotiation drafts.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for _router in (
    imports.router,
    emails.router,
    subscriptions.router,
    vendors.router,
    negotiations.router,
    savings.router,
    dashboard.router,
    renewals.router,
    llm.router,
):
    app.include_router(_router, dependencies=[RequireAPIAuth])


@app.get("/health", response_model=HealthResponse, tags=["meta"])
def health():
    return HealthResponse(status="ok", version=VERSION)
