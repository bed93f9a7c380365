"""
Schémas Pydantic pour la présence partielle d'un participant (événements multi-sessions).
Endpoint : GET /api/v1/attendance/partial/{subject_id}/{event_id}
"""

import uuid
from typing import List

from pydantic import BaseModel


class SessionAttendance(BaseModel):
    session_id: uuid.UUID
    title: str
    order: int
    is_required: bool
    attended: bool
    duration_seconds: int         # Somme des présences clôturées (0 sans check-out)


class PartialAttendanceResult(BaseModel):
    """Calculé à la lecture, jamais stocké."""

    subject_id: uuid.UUID
    event_id: uuid.UUID
    total_sessions: int
    attended_sessions: int
    required_sessions: int
    attended_required_sessions: int
    required_attendance_percentage: int
    sessions: List[SessionAttendance] = []
