"""
Statistiques de présence d'un événement pour les tableaux de bord.

Requête « pull » recalculée à chaque appel : aucun état partagé côté serveur.
La réponse annonce sa fenêtre de fraîcheur (refresh_after_seconds) pour que
le client règle son rafraîchissement.
"""

import uuid
from collections import Counter
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.models.event import EventParticipant
from app.models.session import EventSession
from app.schemas.stats import EventAttendanceStats, SessionStats
from app.services import attendance_service
from app.timeutils import percentage, resolve_now


def get_event_stats(
    db: Session,
    event_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> EventAttendanceStats:
    """Lève EventNotFound si l'événement n'existe pas."""
    attendance_service.get_event(db, event_id)

    total_participants = db.execute(
        select(func.count())
        .select_from(EventParticipant)
        .where(EventParticipant.event_id == event_id)
    ).scalar() or 0

    records = attendance_service.list_records(db, event_id)
    sessions = db.execute(
        select(EventSession)
        .where(EventSession.event_id == event_id)
        .order_by(EventSession.order)
    ).scalars().all()

    checked_in = len({r.subject_id for r in records})

    session_stats = []
    for session in sessions:
        session_records = [r for r in records if r.session_id == session.id]
        session_stats.append(
            SessionStats(
                session_id=session.id,
                title=session.title,
                is_required=bool(session.is_required),
                checked_in=len({r.subject_id for r in session_records}),
                currently_present=sum(1 for r in session_records if r.is_open),
            )
        )

    return EventAttendanceStats(
        event_id=event_id,
        total_participants=total_participants,
        checked_in=checked_in,
        currently_present=sum(1 for r in records if r.is_open),
        late=sum(1 for r in records if r.status == "LATE"),
        attendance_rate=percentage(checked_in, total_participants),
        by_method=dict(Counter(r.method for r in records)),
        sessions=session_stats,
        generated_at=resolve_now(now),
        refresh_after_seconds=settings.DASHBOARD_REFRESH_SECONDS,
    )
