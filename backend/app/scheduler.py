"""
Planificateur APScheduler : surveillance des présences jamais clôturées.

Le job s'exécute toutes les heures et journalise les présences ouvertes depuis
plus de STALE_OPEN_RECORD_HOURS (check-out oublié). Il ne modifie rien : la
clôture reste un acte explicite (check-out).
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.database import SessionLocal
from app.models.attendance import AttendanceRecord
from app.timeutils import resolve_now

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def count_stale_open_records(db: Session, now: Optional[datetime] = None) -> int:
    """Nombre de présences ouvertes dont l'entrée dépasse le seuil d'ancienneté."""
    cutoff = resolve_now(now) - timedelta(hours=settings.STALE_OPEN_RECORD_HOURS)
    return db.execute(
        select(func.count())
        .select_from(AttendanceRecord)
        .where(
            AttendanceRecord.check_out_time.is_(None),
            AttendanceRecord.check_in_time < cutoff,
        )
    ).scalar() or 0


def _report_stale_open_records() -> None:
    db = SessionLocal()
    try:
        stale = count_stale_open_records(db)
        if stale:
            logger.warning(
                "%d présence(s) ouverte(s) depuis plus de %dh (check-out manquant)",
                stale, settings.STALE_OPEN_RECORD_HOURS,
            )
    except Exception as exc:
        logger.error("Erreur lors de la vérification des présences ouvertes : %s", exc)
    finally:
        db.close()


def start_scheduler() -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    if not settings.SCHEDULER_ENABLED:
        logger.info("Scheduler désactivé (SCHEDULER_ENABLED=false).")
        return
    scheduler.add_job(
        _report_stale_open_records,
        trigger="interval",
        hours=1,
        id="stale_open_records_check",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler démarré — vérification des présences ouvertes toutes les heures.")


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
