"""
Modèles SQLAlchemy pour les événements et leurs participants.

Tables alimentées par le service Événements (configuration externe) :
ce backend ne fait que les lire.
"""

import uuid
from sqlalchemy import Column, DateTime, Float, ForeignKey, String, Uuid, func

from app.database import Base


class Event(Base):
    __tablename__ = "events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    status = Column(String(20), default="PLANNED")  # PLANNED, ACTIVE, COMPLETED, CANCELLED
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)

    # Lieu de l'événement (NULL = pas de contrôle de périmètre)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    geofence_radius_meters = Column(Float, nullable=True)  # NULL → rayon par défaut (config)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class EventParticipant(Base):
    """Association événement ↔ participants autorisés à pointer."""
    __tablename__ = "event_participants"

    event_id = Column(Uuid, ForeignKey("events.id", ondelete="CASCADE"), primary_key=True)
    subject_id = Column(Uuid, primary_key=True)
    added_at = Column(DateTime, server_default=func.now())
