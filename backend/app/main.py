"""
FHX Quotation API
FastAPI backend with async SQLAlchemy: volume-tier quotation costing,
PERT material estimates for quick quotes, and PDF export.
"""
import os
import logging
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load .env file automatically in dev (no-op if the file is missing)
load_dotenv()

from app.services.logging_config import setup_logging
from app.services.middleware import RequestTimingMiddleware, SecurityHeadersMiddleware

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("fhx-api")

_PROCESS_START = time.monotonic()

if not os.getenv("DATABASE_URL"):
    logger.warning("MISSING env var: DATABASE_URL, running in dev mode")


@asynccontextmanager
async def lifespan(app: FastAPI):
    from app.db import init_db
    await init_db()
    yield
    from app.db import engine
    await engine.dispose()


app = FastAPI(
    title="FHX Quotation API",
    version="1.0.0",
    description="Volume-tier quotation costing and PERT material estimates",
    lifespan=lifespan,
)

_cors_default = "http://localhost:3000,http://localhost:8000"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
)
app.add_middleware(SecurityHeadersMiddleware)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

# Routers
from app.api.quotation_routes import router as quotation_router
from app.api.quick_quote_routes import router as quick_quote_router
from app.api.material_routes import router as material_router
from app.api.settings_routes import router as settings_router

app.include_router(quotation_router)
app.include_router(quick_quote_router)
app.include_router(material_router)
app.include_router(settings_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": "1.0.0",
        "db_configured": bool(os.getenv("DATABASE_URL")),
        "uptime_seconds": round(time.monotonic() - _PROCESS_START, 1),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
