"""
Modèle SQLAlchemy pour les présences (check-in / check-out).

Règles portées par le schéma :
- scope_id    : session_id si la présence vise une session, sinon event_id
- un seul enregistrement ouvert (check_out_time NULL) par (scope_id, subject_id),
  garanti par un index unique partiel → deux check-in concurrents ne peuvent
  pas réussir tous les deux
- offline_id / checkout_offline_id : clés d'idempotence générées par le client
- les timestamps sont stockés en UTC naïf
"""

import uuid
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    text,
)

from app.database import Base


class AttendanceRecord(Base):
    """Présence d'un participant à un événement ou à l'une de ses sessions."""
    __tablename__ = "attendance_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    offline_id = Column(Uuid, unique=True, nullable=True)           # Clé idempotence check-in offline
    checkout_offline_id = Column(Uuid, unique=True, nullable=True)  # Clé idempotence check-out offline

    event_id = Column(Uuid, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    session_id = Column(Uuid, ForeignKey("event_sessions.id", ondelete="CASCADE"), nullable=True)
    scope_id = Column(Uuid, nullable=False)
    subject_id = Column(Uuid, nullable=False, index=True)

    method = Column(String(20), nullable=False)   # qr_code, geolocation, manual, biometric, nfc
    status = Column(String(20), nullable=False, default="PRESENT")  # PRESENT, LATE

    check_in_time = Column(DateTime, nullable=False)    # Timestamp d'origine (client)
    check_out_time = Column(DateTime, nullable=True)    # NULL = présence ouverte
    duration_seconds = Column(Integer, nullable=True)

    # Preuves selon la méthode
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    location_accuracy = Column(Float, nullable=True)
    qr_code_data = Column(String(500), nullable=True)
    biometric_template_ref = Column(String(255), nullable=True)
    token_uid = Column(String(50), nullable=True)
    marked_by = Column(Uuid, nullable=True)
    notes = Column(Text, nullable=True)
    device_info = Column(JSON, nullable=True)

    recorded_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index(
            "uq_attendance_open_per_scope",
            "scope_id",
            "subject_id",
            unique=True,
            postgresql_where=text("check_out_time IS NULL"),
            sqlite_where=text("check_out_time IS NULL"),
        ),
    )

    @property
    def is_open(self) -> bool:
        return self.check_out_time is None
