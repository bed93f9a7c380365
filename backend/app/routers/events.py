"""
Routers de lecture des présences par événement (listes et tableau de bord).
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.exceptions import AttendanceError
from app.schemas.attendance import AttendanceRecordResponse
from app.schemas.stats import EventAttendanceStats
from app.services import attendance_service, stats_service

router = APIRouter(prefix="/api/v1/events", tags=["Événements"])


@router.get(
    "/{event_id}/attendance",
    response_model=List[AttendanceRecordResponse],
    summary="Lister les présences d'un événement",
)
def list_attendance(
    event_id: uuid.UUID,
    session_id: Optional[uuid.UUID] = None,
    subject_id: Optional[uuid.UUID] = None,
    db: Session = Depends(get_db),
):
    """Présences triées par heure d'entrée, filtrables par session et participant."""
    try:
        attendance_service.get_event(db, event_id)
    except AttendanceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    return attendance_service.list_records(db, event_id, session_id=session_id, subject_id=subject_id)


@router.get(
    "/{event_id}/attendance/stats",
    response_model=EventAttendanceStats,
    summary="Statistiques de présence pour le tableau de bord",
)
def get_attendance_stats(event_id: uuid.UUID, db: Session = Depends(get_db)):
    """
    Instantané recalculé à chaque appel. Le tableau de bord ne doit pas
    interroger plus souvent que `refresh_after_seconds`.
    """
    try:
        return stats_service.get_event_stats(db, event_id)
    except AttendanceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
