"""
File d'attente offline côté client.

Journal en ajout seul : chaque pointage saisi hors réseau devient une entrée
avec un drapeau `confirmed`. Une entrée n'est marquée confirmée qu'après une
issue terminale renvoyée par le serveur (confirmed, already_processed,
conflict, rejected). Une erreur de transport la laisse en attente avec un
backoff exponentiel.

Le support de stockage est interchangeable (QueueStorage) : mémoire pour les
tests, SQLite (SQLAlchemy) pour un appareil.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    insert,
    select,
    update,
)

from app.client.sync_client import SyncRequestRejected, SyncTransportError
from app.config import settings
from app.schemas.sync import OfflineSubmission, SyncResponse
from app.timeutils import resolve_now, utcnow

logger = logging.getLogger(__name__)

TERMINAL_OUTCOMES = {"confirmed", "already_processed", "conflict", "rejected"}


@dataclass
class QueueEntry:
    submission: OfflineSubmission
    confirmed: bool = False
    attempts: int = 0
    last_error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None
    outcome: Optional[str] = None
    enqueued_at: datetime = field(default_factory=utcnow)
    confirmed_at: Optional[datetime] = None

    @property
    def offline_id(self) -> uuid.UUID:
        return self.submission.offline_id

    def is_due(self, now: datetime) -> bool:
        return not self.confirmed and (self.next_attempt_at is None or self.next_attempt_at <= now)


@dataclass
class DrainReport:
    sent: int = 0
    confirmed: int = 0
    retry_later: int = 0
    rejected: int = 0
    outcomes: Dict[str, int] = field(default_factory=dict)


class QueueStorage(ABC):
    @abstractmethod
    def get(self, offline_id: uuid.UUID) -> Optional[QueueEntry]: ...

    @abstractmethod
    def append(self, entry: QueueEntry) -> None: ...

    @abstractmethod
    def save(self, entry: QueueEntry) -> None: ...

    @abstractmethod
    def entries(self) -> List[QueueEntry]:
        """Toutes les entrées, dans l'ordre d'ajout."""

    @abstractmethod
    def remove(self, offline_id: uuid.UUID) -> None: ...


class MemoryQueueStorage(QueueStorage):
    def __init__(self) -> None:
        self._entries: Dict[uuid.UUID, QueueEntry] = {}

    def get(self, offline_id):
        return self._entries.get(offline_id)

    def append(self, entry):
        self._entries[entry.offline_id] = entry

    def save(self, entry):
        self._entries[entry.offline_id] = entry

    def entries(self):
        return list(self._entries.values())

    def remove(self, offline_id):
        self._entries.pop(offline_id, None)


class SqliteQueueStorage(QueueStorage):
    """File persistée dans une base SQLite locale (survit aux redémarrages de l'app)."""

    def __init__(self, url: str = "sqlite:///offline_queue.db") -> None:
        self._metadata = MetaData()
        self._table = Table(
            "offline_queue",
            self._metadata,
            Column("seq", Integer, primary_key=True, autoincrement=True),
            Column("offline_id", String(36), unique=True, nullable=False),
            Column("payload", JSON, nullable=False),
            Column("confirmed", Boolean, nullable=False, default=False),
            Column("attempts", Integer, nullable=False, default=0),
            Column("last_error", Text, nullable=True),
            Column("next_attempt_at", DateTime, nullable=True),
            Column("outcome", String(20), nullable=True),
            Column("enqueued_at", DateTime, nullable=False),
            Column("confirmed_at", DateTime, nullable=True),
        )
        self._engine = create_engine(url)
        self._metadata.create_all(self._engine)

    def get(self, offline_id):
        with self._engine.connect() as conn:
            row = conn.execute(
                select(self._table).where(self._table.c.offline_id == str(offline_id))
            ).mappings().first()
        return self._to_entry(row) if row else None

    def append(self, entry):
        with self._engine.begin() as conn:
            conn.execute(insert(self._table).values(offline_id=str(entry.offline_id), **self._values(entry)))

    def save(self, entry):
        with self._engine.begin() as conn:
            conn.execute(
                update(self._table)
                .where(self._table.c.offline_id == str(entry.offline_id))
                .values(**self._values(entry))
            )

    def entries(self):
        with self._engine.connect() as conn:
            rows = conn.execute(select(self._table).order_by(self._table.c.seq)).mappings().all()
        return [self._to_entry(row) for row in rows]

    def remove(self, offline_id):
        with self._engine.begin() as conn:
            conn.execute(delete(self._table).where(self._table.c.offline_id == str(offline_id)))

    def close(self) -> None:
        self._engine.dispose()

    @staticmethod
    def _values(entry: QueueEntry) -> dict:
        return {
            "payload": entry.submission.model_dump(mode="json"),
            "confirmed": entry.confirmed,
            "attempts": entry.attempts,
            "last_error": entry.last_error,
            "next_attempt_at": entry.next_attempt_at,
            "outcome": entry.outcome,
            "enqueued_at": entry.enqueued_at,
            "confirmed_at": entry.confirmed_at,
        }

    @staticmethod
    def _to_entry(row) -> QueueEntry:
        return QueueEntry(
            submission=OfflineSubmission.model_validate(row["payload"]),
            confirmed=row["confirmed"],
            attempts=row["attempts"],
            last_error=row["last_error"],
            next_attempt_at=row["next_attempt_at"],
            outcome=row["outcome"],
            enqueued_at=row["enqueued_at"],
            confirmed_at=row["confirmed_at"],
        )


class OfflineQueue:
    def __init__(
        self,
        storage: Optional[QueueStorage] = None,
        *,
        backoff_base_seconds: float = 5.0,
        backoff_max_seconds: float = 900.0,
        max_batch_size: int = settings.MAX_SYNC_BATCH_SIZE,
    ):
        self.storage = storage or MemoryQueueStorage()
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.max_batch_size = max_batch_size

    def enqueue(self, submission: OfflineSubmission) -> QueueEntry:
        """Ajoute un pointage ; un offline_id déjà en file renvoie l'entrée existante."""
        existing = self.storage.get(submission.offline_id)
        if existing is not None:
            return existing
        entry = QueueEntry(submission=submission)
        self.storage.append(entry)
        logger.debug("Pointage %s mis en file (%s)", entry.offline_id, submission.action)
        return entry

    def pending(self, *, now: Optional[datetime] = None) -> List[QueueEntry]:
        """Entrées non confirmées dont le délai de backoff est écoulé."""
        now = resolve_now(now)
        return [e for e in self.storage.entries() if e.is_due(now)]

    def backoff_delay(self, attempts: int) -> timedelta:
        seconds = self.backoff_base_seconds * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(seconds, self.backoff_max_seconds))

    def drain(
        self,
        send: Callable[[List[OfflineSubmission]], SyncResponse],
        *,
        now: Optional[datetime] = None,
    ) -> DrainReport:
        """
        Envoie les entrées dues en un batch et applique les issues du serveur.

        `send` lève SyncTransportError en cas d'erreur réseau/serveur : toutes
        les entrées envoyées restent en file avec un nouveau délai.

        Un batch refusé (SyncRequestRejected) est isolé par dichotomie : la
        taille des batchs suivants est divisée par deux. Une entrée refusée
        seule ne passera jamais ; elle est close avec l'issue `rejected`.
        """
        now = resolve_now(now)
        due = self.pending(now=now)[: self.max_batch_size]
        report = DrainReport(sent=len(due))
        if not due:
            return report

        try:
            response = send([e.submission for e in due])
        except SyncTransportError as exc:
            for entry in due:
                self._retry_later(entry, str(exc), now)
            report.retry_later = len(due)
            logger.warning("Synchronisation échouée (%s) : %d pointage(s) restent en file", exc, len(due))
            return report
        except SyncRequestRejected as exc:
            self._isolate_rejected(due, exc, now, report)
            return report

        results = {r.offline_id: r for r in response.results}
        for entry in due:
            result = results.get(str(entry.offline_id))
            if result is None or result.outcome not in TERMINAL_OUTCOMES:
                self._retry_later(entry, "Aucune issue renvoyée par le serveur", now)
                report.retry_later += 1
                continue

            entry.confirmed = True
            entry.outcome = result.outcome
            entry.confirmed_at = now
            entry.last_error = result.message
            self.storage.save(entry)
            report.confirmed += 1
            report.outcomes[result.outcome] = report.outcomes.get(result.outcome, 0) + 1

        logger.info(
            "Synchronisation : %d envoyés, %d confirmés, %d à réessayer",
            report.sent, report.confirmed, report.retry_later,
        )
        return report

    def purge_confirmed(self, older_than_days: int = 7, *, now: Optional[datetime] = None) -> int:
        """Supprime les entrées confirmées depuis plus de `older_than_days` jours."""
        cutoff = resolve_now(now) - timedelta(days=older_than_days)
        purged = 0
        for entry in self.storage.entries():
            if entry.confirmed and entry.confirmed_at is not None and entry.confirmed_at < cutoff:
                self.storage.remove(entry.offline_id)
                purged += 1
        return purged

    def status(self, *, now: Optional[datetime] = None) -> Dict[str, int]:
        now = resolve_now(now)
        entries = self.storage.entries()
        return {
            "total": len(entries),
            "confirmed": sum(1 for e in entries if e.confirmed),
            "pending": sum(1 for e in entries if not e.confirmed),
            "waiting_backoff": sum(1 for e in entries if not e.confirmed and not e.is_due(now)),
        }

    def _isolate_rejected(
        self,
        due: List[QueueEntry],
        exc: SyncRequestRejected,
        now: datetime,
        report: DrainReport,
    ) -> None:
        if len(due) == 1:
            entry = due[0]
            entry.attempts += 1
            entry.confirmed = True
            entry.outcome = "rejected"
            entry.confirmed_at = now
            entry.last_error = str(exc)
            self.storage.save(entry)
            report.rejected = 1
            report.outcomes["rejected"] = 1
            logger.error("Pointage %s refusé par le serveur, retiré de la file : %s", entry.offline_id, exc)
            return

        self.max_batch_size = max(len(due) // 2, 1)
        for entry in due:
            self._retry_later(entry, str(exc), now)
        report.retry_later = len(due)
        logger.warning(
            "Batch de %d pointage(s) refusé (%s) : nouvel essai par batchs de %d",
            len(due), exc.status_code, self.max_batch_size,
        )

    def _retry_later(self, entry: QueueEntry, error: str, now: datetime) -> None:
        entry.attempts += 1
        entry.last_error = error
        entry.next_attempt_at = now + self.backoff_delay(entry.attempts)
        self.storage.save(entry)
