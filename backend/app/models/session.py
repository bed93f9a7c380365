"""
Modèle SQLAlchemy pour les sessions d'un événement multi-sessions.
Lecture seule : créées par la configuration de l'événement.
"""

import uuid
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Uuid

from app.database import Base


class EventSession(Base):
    """Session d'un événement — `is_required` compte pour le taux de conformité."""
    __tablename__ = "event_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id = Column(Uuid, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    is_required = Column(Boolean, default=False, nullable=False)
    order = Column("sequence_order", Integer, nullable=False, default=0)
