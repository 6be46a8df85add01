"""
FACTURAS-SV — Main API Application
FastAPI backend for the DTE lifecycle in El Salvador.

Flow:
  1. PUT  /api/v1/companies/{id}/credentials  → MH user, password, certificate key
  2. POST /api/v1/documents                   → create (Nueva, numbered, totals)
  3. POST /api/v1/documents/{id}/submit       → Sincronizando → Completada | Nueva
  4. POST /api/v1/documents/{id}/invalidate   → Anulada
  5. GET  /api/v1/documents/{id}/qr           → public verification URL
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from facturas.core.config import get_api_url, settings
from facturas.core.exceptions import DocumentError, SubmissionError
from facturas.dependencies import get_manager
from facturas.routers.documents_router import create_documents_router
from facturas.schemas.models import ErrorResponse, HealthResponse

# ─────────────────────────────────────────────────────────────
# LOGGING
# ─────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("facturas-sv")


# ─────────────────────────────────────────────────────────────
# APP LIFECYCLE
# ─────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"🚀 FACTURAS-SV v{settings.app_version} starting...")
    logger.info(f"   Environment: {settings.mh_environment.value}")
    logger.info(f"   DTE service: {get_api_url('base')}")
    yield
    logger.info("FACTURAS-SV shutdown complete.")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Cálculo de impuestos y ciclo de vida de DTE para El Salvador",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─────────────────────────────────────────────────────────────
# GLOBAL EXCEPTION HANDLERS
# ─────────────────────────────────────────────────────────────

@app.exception_handler(DocumentError)
async def document_error_handler(request: Request, exc: DocumentError):
    observaciones = exc.observaciones if isinstance(exc, SubmissionError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=type(exc).__name__, detail=exc.message, code=exc.code,
            field=exc.field, mh_observaciones=observaciones or None,
        ).model_dump(),
    )


# ─────────────────────────────────────────────────────────────
# ROUTES
# ─────────────────────────────────────────────────────────────

@app.get("/health", response_model=HealthResponse, tags=["Sistema"])
async def health_check():
    """Verificar estado del servicio."""
    return {
        "status": "ok",
        "version": settings.app_version,
        "environment": settings.mh_environment.value,
        "api_base_url": get_api_url("base"),
    }


app.include_router(create_documents_router(get_manager))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("facturas.main:app", host=settings.host, port=settings.port, reload=settings.debug)
