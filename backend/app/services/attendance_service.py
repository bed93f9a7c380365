"""
Service d'enregistrement des présences (check-in / check-out).

Seul point d'écriture de la table attendance_records :
- check-in  : ABSENT → PRESENT, ajoute un enregistrement ouvert
- check-out : PRESENT → ABSENT, clôture l'enregistrement (durée calculée)
- un nouveau check-in après clôture crée un nouvel enregistrement (ré-entrée)

Idempotence : un offline_id (ou checkout_offline_id) déjà connu renvoie
l'enregistrement existant sans rien écrire.
Concurrence : l'index unique partiel sur (scope_id, subject_id) des présences
ouvertes tranche au commit ; l'IntegrityError est convertie en AlreadyCheckedIn.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import (
    AlreadyCheckedIn,
    ClockSkewError,
    EventClosed,
    EventNotFound,
    InvalidTimestamp,
    NoOpenRecord,
    RecordNotFound,
    SessionNotFound,
    SubjectHasNoAccess,
)
from app.models.attendance import AttendanceRecord
from app.models.event import Event, EventParticipant
from app.models.session import EventSession
from app.schemas.attendance import CheckInRequest, CheckOutRequest
from app.services.change_feed import AttendanceChange, change_feed
from app.services.geo import validate_geolocation
from app.timeutils import resolve_now, to_utc_naive

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------
# Lectures partagées (aussi utilisées par les autres services)
# ----------------------------------------------------------------

def get_event(db: Session, event_id: uuid.UUID) -> Event:
    event = db.get(Event, event_id)
    if event is None:
        raise EventNotFound(f"Événement {event_id} introuvable.")
    return event


def ensure_participant(db: Session, event_id: uuid.UUID, subject_id: uuid.UUID) -> None:
    """Lève SubjectHasNoAccess si le participant n'est pas inscrit à l'événement."""
    participant = db.execute(
        select(EventParticipant).where(
            EventParticipant.event_id == event_id,
            EventParticipant.subject_id == subject_id,
        )
    ).scalar()
    if participant is None:
        raise SubjectHasNoAccess(
            f"Le participant {subject_id} n'est pas inscrit à l'événement {event_id}."
        )


def list_records(
    db: Session,
    event_id: uuid.UUID,
    session_id: Optional[uuid.UUID] = None,
    subject_id: Optional[uuid.UUID] = None,
) -> List[AttendanceRecord]:
    """Présences d'un événement, filtrables par session et participant, par heure d'entrée."""
    query = select(AttendanceRecord).where(AttendanceRecord.event_id == event_id)
    if session_id is not None:
        query = query.where(AttendanceRecord.session_id == session_id)
    if subject_id is not None:
        query = query.where(AttendanceRecord.subject_id == subject_id)

    return list(db.execute(query.order_by(AttendanceRecord.check_in_time)).scalars().all())


def get_record(db: Session, record_id: uuid.UUID) -> AttendanceRecord:
    record = db.get(AttendanceRecord, record_id)
    if record is None:
        raise RecordNotFound(f"Présence {record_id} introuvable.")
    return record


# ----------------------------------------------------------------
# Check-in
# ----------------------------------------------------------------

def check_in(
    db: Session,
    data: CheckInRequest,
    *,
    now: Optional[datetime] = None,
) -> Tuple[AttendanceRecord, bool]:
    """
    Ouvre une présence pour (événement ou session, participant).

    Retourne (enregistrement, créé). `créé` vaut False pour un rejeu d'un
    offline_id déjà enregistré.

    Lève InvalidTimestamp, EventNotFound, EventClosed, SubjectHasNoAccess,
    SessionNotFound, LocationAccuracyTooLow, LocationTooFar ou AlreadyCheckedIn.
    """
    if data.offline_id is not None:
        existing = _find_by_offline_id(db, data.offline_id)
        if existing is not None:
            logger.debug("offline_id %s déjà enregistré, rejeu ignoré", data.offline_id)
            return existing, False

    now = resolve_now(now)
    timestamp = to_utc_naive(data.timestamp) if data.timestamp is not None else now
    _ensure_not_in_future(timestamp, now)

    event = get_event(db, data.event_id)
    if event.status == "CANCELLED":
        raise EventClosed()
    ensure_participant(db, event.id, data.subject_id)

    session = None
    if data.session_id is not None:
        session = _get_session(db, event.id, data.session_id)

    if data.method == "geolocation":
        validate_geolocation(event, data.latitude, data.longitude, data.accuracy)

    scope_id = data.session_id or data.event_id
    if _find_open_record(db, scope_id, data.subject_id) is not None:
        raise AlreadyCheckedIn()

    reference_start = session.start_time if session is not None else event.start_time
    record = AttendanceRecord(
        offline_id=data.offline_id,
        event_id=data.event_id,
        session_id=data.session_id,
        scope_id=scope_id,
        subject_id=data.subject_id,
        method=data.method,
        status=_determine_status(timestamp, reference_start),
        check_in_time=timestamp,
        device_info=data.device_info,
        notes=data.notes,
    )
    _apply_evidence(record, data)
    db.add(record)

    try:
        db.commit()
    except IntegrityError:
        # Écrivain concurrent : même offline_id ou présence ouverte entre-temps
        db.rollback()
        if data.offline_id is not None:
            existing = _find_by_offline_id(db, data.offline_id)
            if existing is not None:
                return existing, False
        raise AlreadyCheckedIn()

    db.refresh(record)
    logger.info(
        "Check-in %s — participant %s, événement %s, session %s (%s, %s)",
        record.id, record.subject_id, record.event_id, record.session_id or "-",
        record.method, record.status,
    )
    _publish("checked_in", record, record.check_in_time)
    return record, True


# ----------------------------------------------------------------
# Check-out
# ----------------------------------------------------------------

def check_out(
    db: Session,
    data: CheckOutRequest,
    *,
    now: Optional[datetime] = None,
) -> Tuple[AttendanceRecord, bool]:
    """
    Clôture la présence ouverte désignée par record_id ou par clé.

    Retourne (enregistrement, clôturé). `clôturé` vaut False pour un rejeu
    d'un offline_id de sortie déjà appliqué.

    Lève InvalidTimestamp, NoOpenRecord ou ClockSkewError.
    """
    if data.offline_id is not None:
        existing = _find_by_checkout_offline_id(db, data.offline_id)
        if existing is not None:
            logger.debug("offline_id de sortie %s déjà appliqué, rejeu ignoré", data.offline_id)
            return existing, False

    now = resolve_now(now)
    timestamp = to_utc_naive(data.timestamp) if data.timestamp is not None else now
    _ensure_not_in_future(timestamp, now)

    if data.record_id is not None:
        record = db.get(AttendanceRecord, data.record_id, with_for_update=True)
        if record is None or not record.is_open:
            raise NoOpenRecord(f"Aucune présence ouverte avec l'identifiant {data.record_id}.")
    else:
        scope_id = data.session_id or data.event_id
        record = _find_open_record(db, scope_id, data.subject_id, for_update=True)
        if record is None:
            raise NoOpenRecord()

    if timestamp < record.check_in_time:
        raise ClockSkewError(
            f"Sortie à {timestamp.isoformat()} antérieure à l'entrée "
            f"du {record.check_in_time.isoformat()}."
        )

    record.check_out_time = timestamp
    record.duration_seconds = int((timestamp - record.check_in_time).total_seconds())
    record.checkout_offline_id = data.offline_id

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _find_by_checkout_offline_id(db, data.offline_id) if data.offline_id else None
        if existing is not None:
            return existing, False
        raise

    db.refresh(record)
    logger.info(
        "Check-out %s — participant %s, durée %ds",
        record.id, record.subject_id, record.duration_seconds,
    )
    _publish("checked_out", record, record.check_out_time)
    return record, True


# ----------------------------------------------------------------
# Helpers internes
# ----------------------------------------------------------------

def _ensure_not_in_future(timestamp: datetime, now: datetime) -> None:
    tolerance = timedelta(minutes=settings.CLOCK_SKEW_TOLERANCE_MINUTES)
    if timestamp > now + tolerance:
        raise InvalidTimestamp(
            f"Timestamp {timestamp.isoformat()} dans le futur "
            f"(tolérance {settings.CLOCK_SKEW_TOLERANCE_MINUTES} min)."
        )


def _get_session(db: Session, event_id: uuid.UUID, session_id: uuid.UUID) -> EventSession:
    session = db.get(EventSession, session_id)
    if session is None or session.event_id != event_id:
        raise SessionNotFound(f"Session {session_id} introuvable pour l'événement {event_id}.")
    return session


def _find_by_offline_id(db: Session, offline_id: uuid.UUID) -> Optional[AttendanceRecord]:
    return db.execute(
        select(AttendanceRecord).where(AttendanceRecord.offline_id == offline_id)
    ).scalar()


def _find_by_checkout_offline_id(db: Session, offline_id: uuid.UUID) -> Optional[AttendanceRecord]:
    return db.execute(
        select(AttendanceRecord).where(AttendanceRecord.checkout_offline_id == offline_id)
    ).scalar()


def _find_open_record(
    db: Session,
    scope_id: uuid.UUID,
    subject_id: uuid.UUID,
    for_update: bool = False,
) -> Optional[AttendanceRecord]:
    query = select(AttendanceRecord).where(
        AttendanceRecord.scope_id == scope_id,
        AttendanceRecord.subject_id == subject_id,
        AttendanceRecord.check_out_time.is_(None),
    )
    if for_update:
        query = query.with_for_update()
    return db.execute(query).scalar()


def _determine_status(check_in_time: datetime, start_time: Optional[datetime]) -> str:
    if start_time is None:
        return "PRESENT"
    late_after = start_time + timedelta(minutes=settings.LATE_THRESHOLD_MINUTES)
    return "LATE" if check_in_time > late_after else "PRESENT"


def _apply_evidence(record: AttendanceRecord, data: CheckInRequest) -> None:
    """Recopie les champs propres à la méthode de pointage."""
    if data.method == "qr_code":
        record.qr_code_data = data.qr_code_data
    elif data.method == "geolocation":
        record.latitude = data.latitude
        record.longitude = data.longitude
        record.location_accuracy = data.accuracy
    elif data.method == "biometric":
        record.biometric_template_ref = data.template_ref
    elif data.method == "nfc":
        record.token_uid = data.token_uid
    elif data.method == "manual":
        record.marked_by = data.marked_by


def _publish(kind: str, record: AttendanceRecord, occurred_at: datetime) -> None:
    change_feed.publish(
        AttendanceChange(
            kind=kind,
            record_id=record.id,
            event_id=record.event_id,
            session_id=record.session_id,
            subject_id=record.subject_id,
            occurred_at=occurred_at,
        )
    )
