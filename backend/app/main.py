"""
Main Entry Point - FastAPI Application
Progetto: Business Manager (Gestionale Commerciale)

Configura l'applicazione FastAPI con middleware, router e lifecycle.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1 import api_v1_router
from app.core.config import settings
from app.core.database import close_db, init_db
from app.core.exceptions import AppException, DatabaseOperationError

# ------------------------------------------------------------
# Configurazione Logging
# ------------------------------------------------------------
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# Lifespan Handler
# ------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Gestisce il ciclo di vita dell'applicazione.

    - Startup: inizializza la connessione al database
    - Shutdown: chiude le connessioni database
    """
    # Startup
    logger.info("Avvio %s v%s", settings.app_name, settings.app_version)
    await init_db()
    logger.info("Applicazione avviata con successo")

    yield

    # Shutdown
    logger.info("Arresto applicazione in corso...")
    await close_db()
    logger.info("Applicazione arrestata")


# ------------------------------------------------------------
# FastAPI Application
# ------------------------------------------------------------
app = FastAPI(
    title=settings.app_name,
    description="Gestionale commerciale - documenti, pagamenti e magazzino",
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# ------------------------------------------------------------
# Exception Handlers
# ------------------------------------------------------------
@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Gestore per tutte le eccezioni applicative.

    Converte l'eccezione nella risposta HTTP corrispondente
    ({detail, error_code, extra}).
    """
    if isinstance(exc, DatabaseOperationError):
        logger.error("Errore database su %s %s: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error_code": exc.error_code,
            "extra": exc.extra,
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Gestore generico per tutte le eccezioni non catturate.

    Converte l'eccezione in risposta HTTP 500 e logga l'errore.
    """
    logger.error(
        "Unhandled exception: %s",
        exc,
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"detail": "Errore interno del server", "error_code": "INTERNAL_SERVER_ERROR"},
    )


# ------------------------------------------------------------
# Middleware CORS
# ------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------
@app.get(
    "/health",
    name="Health Check",
    summary="Controlla lo stato dell'applicazione",
    tags=["System"],
)
async def health_check() -> dict[str, str]:
    """
    Endpoint per il controllo dello stato di salute.

    Returns:
        dict: Stato dell'applicazione
    """
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
    }


# ------------------------------------------------------------
# Router
# ------------------------------------------------------------
app.include_router(api_v1_router)
