"""
Schémas Pydantic pour les statistiques de tableau de bord d'un événement.
Endpoint : GET /api/v1/events/{event_id}/attendance/stats
"""

import uuid
from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel


class SessionStats(BaseModel):
    session_id: uuid.UUID
    title: str
    is_required: bool
    checked_in: int               # Participants distincts ayant pointé
    currently_present: int        # Présences encore ouvertes


class EventAttendanceStats(BaseModel):
    """
    Instantané calculé à la demande. Le client rafraîchit au plus tôt
    `refresh_after_seconds` après `generated_at`.
    """

    event_id: uuid.UUID
    total_participants: int
    checked_in: int
    currently_present: int
    late: int
    attendance_rate: int          # % de participants ayant pointé au moins une fois
    by_method: Dict[str, int]
    sessions: List[SessionStats]
    generated_at: datetime
    refresh_after_seconds: int
