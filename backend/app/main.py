"""
Point d'entrée de l'API de présences.
Démarrage : uvicorn app.main:app --reload

Routers montés :
- /api/v1/attendance  pointage, présence partielle, synchronisation offline
- /api/v1/events      listes et statistiques par événement

Le paquet app.client (offline_queue, sync_client) est la bibliothèque côté
appareil qui alimente /api/v1/attendance/sync ; l'API ne l'importe pas.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

import app.models  # noqa: F401 (enregistre tous les modèles dans Base.metadata avant les routers)
from app.config import settings
from app.routers import attendance, events, sync
from app.scheduler import scheduler, start_scheduler, stop_scheduler

logging.getLogger("app").setLevel(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Démarre le scheduler de surveillance au lancement, l'arrête à l'extinction."""
    logger.info("Démarrage de l'API de présences (env=%s)", settings.ENV)
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(
    title="Attendance API",
    description="API de pointage et de réconciliation des présences (offline-first)",
    version=API_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS : tablettes de pointage et tableaux de bord servis en local pendant le développement
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)

app.include_router(attendance.router)
app.include_router(sync.router)
app.include_router(events.router)


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """
    Base indisponible ou transaction avortée : 503 sans détail interne.
    Le client de synchronisation traite tout 5xx comme transitoire et garde
    ses pointages en file.
    """
    logger.error("Erreur de stockage sur %s %s : %s", request.method, request.url.path, exc, exc_info=True)
    return JSONResponse(
        status_code=503,
        content={"detail": "Stockage des présences momentanément indisponible, réessayer plus tard."},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Toute autre exception non gérée : la réponse 500 passe par CORSMiddleware
    (headers CORS présents), le détail reste dans les logs.
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur interne est survenue."},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API répond ; indique si la surveillance planifiée tourne."""
    return {
        "status": "ok",
        "service": "Attendance API",
        "version": API_VERSION,
        "scheduler_running": scheduler.running,
    }
