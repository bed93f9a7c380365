"""
Service de présence partielle pour les événements multi-sessions.

Calculé à la lecture à partir des présences et des sessions, sans rien
stocker : le résultat reflète toujours le dernier état des enregistrements.
Une session compte comme suivie dès qu'un check-in existe, même sans check-out
(la durée de cette présence est alors nulle).
"""

import logging
import uuid
from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.session import EventSession
from app.schemas.partial_attendance import PartialAttendanceResult, SessionAttendance
from app.services import attendance_service
from app.timeutils import percentage

logger = logging.getLogger(__name__)


def required_attendance_percentage(attended_required: int, required: int) -> int:
    """Aucune session obligatoire → 100 % (conformité triviale)."""
    if required == 0:
        return 100
    return percentage(attended_required, required)


def compute_partial_attendance(
    db: Session,
    subject_id: uuid.UUID,
    event_id: uuid.UUID,
) -> PartialAttendanceResult:
    """
    Calcule la couverture des sessions d'un événement par un participant.

    Lève EventNotFound si l'événement n'existe pas, SubjectHasNoAccess si le
    participant n'y est pas inscrit.
    """
    attendance_service.get_event(db, event_id)
    attendance_service.ensure_participant(db, event_id, subject_id)

    sessions = db.execute(
        select(EventSession)
        .where(EventSession.event_id == event_id)
        .order_by(EventSession.order)
    ).scalars().all()

    records_by_session = defaultdict(list)
    for record in attendance_service.list_records(db, event_id, subject_id=subject_id):
        if record.session_id is not None and record.check_in_time is not None:
            records_by_session[record.session_id].append(record)

    details = []
    for session in sessions:
        records = records_by_session.get(session.id, [])
        details.append(
            SessionAttendance(
                session_id=session.id,
                title=session.title,
                order=session.order,
                is_required=bool(session.is_required),
                attended=bool(records),
                duration_seconds=sum(r.duration_seconds or 0 for r in records),
            )
        )

    attended = sum(1 for d in details if d.attended)
    required = sum(1 for d in details if d.is_required)
    attended_required = sum(1 for d in details if d.is_required and d.attended)

    result = PartialAttendanceResult(
        subject_id=subject_id,
        event_id=event_id,
        total_sessions=len(details),
        attended_sessions=attended,
        required_sessions=required,
        attended_required_sessions=attended_required,
        required_attendance_percentage=required_attendance_percentage(attended_required, required),
        sessions=details,
    )

    logger.debug(
        "Présence partielle %s / %s : %d/%d sessions, %d%% obligatoires",
        subject_id, event_id, attended, len(details), result.required_attendance_percentage,
    )
    return result
