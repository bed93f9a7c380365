"""
Router pour le pointage en ligne et la présence partielle.
Les erreurs métier sont renvoyées avec leur code (`detail.code`) pour que le
client affiche « déjà présent » comme une confirmation, pas comme un échec.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.orm import Session

from app.database import get_db
from app.exceptions import AttendanceError
from app.schemas.attendance import AttendanceRecordResponse, CheckInRequest, CheckOutRequest
from app.schemas.partial_attendance import PartialAttendanceResult
from app.services import attendance_service, partial_attendance_service

router = APIRouter(prefix="/api/v1/attendance", tags=["Présences"])


@router.post(
    "/checkin",
    response_model=AttendanceRecordResponse,
    status_code=201,
    summary="Pointer l'entrée d'un participant",
)
def check_in(data: CheckInRequest, response: Response, db: Session = Depends(get_db)):
    """
    Ouvre une présence (événement ou session) pour un participant.

    - 201 : présence créée
    - 200 : rejeu d'un offline_id déjà enregistré (présence existante renvoyée)
    - 409 ALREADY_CHECKED_IN : une présence est déjà ouverte
    - 400 INVALID_TIMESTAMP / LOCATION_* : pointage refusé
    - 403 / 404 : participant non inscrit, événement ou session introuvable
    """
    try:
        record, created = attendance_service.check_in(db, data)
    except AttendanceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    if not created:
        response.status_code = 200
    return record


@router.post(
    "/checkout",
    response_model=AttendanceRecordResponse,
    summary="Pointer la sortie d'un participant",
)
def check_out(data: CheckOutRequest, db: Session = Depends(get_db)):
    """
    Clôture la présence ouverte (par record_id ou par événement/session + participant)
    et calcule sa durée.

    - 409 NO_OPEN_RECORD : aucune présence ouverte
    - 400 CLOCK_SKEW : sortie antérieure à l'entrée
    """
    try:
        record, _ = attendance_service.check_out(db, data)
    except AttendanceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
    return record


@router.get(
    "/partial/{subject_id}/{event_id}",
    response_model=PartialAttendanceResult,
    summary="Présence partielle d'un participant sur un événement multi-sessions",
)
def get_partial_attendance(subject_id: uuid.UUID, event_id: uuid.UUID, db: Session = Depends(get_db)):
    """Sessions suivies, sessions obligatoires couvertes et pourcentage de conformité."""
    try:
        return partial_attendance_service.compute_partial_attendance(db, subject_id, event_id)
    except AttendanceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())


@router.get(
    "/records/{record_id}",
    response_model=AttendanceRecordResponse,
    summary="Détail d'une présence",
)
def get_record(record_id: uuid.UUID, db: Session = Depends(get_db)):
    try:
        return attendance_service.get_record(db, record_id)
    except AttendanceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_detail())
