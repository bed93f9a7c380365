"""
Service de synchronisation offline → online.

Rejoue un batch de pointages mis en file côté client :
- ordre chronologique (timestamp d'origine), pas ordre d'arrivée, pour qu'un
  check-in précède sa sortie même si le réseau les a inversés
- idempotence via offline_id : doublon intra-batch (set en mémoire) ou déjà
  en base (idempotence du service de présence) → already_processed
- le timestamp enregistré est celui du pointage, pas celui de la réception
- chaque soumission est sa propre transaction : une entrée en conflit
  (AlreadyCheckedIn, NoOpenRecord, ClockSkewError) est rapportée `conflict`
  sans bloquer le reste du batch ; les autres erreurs métier → `rejected`
- les erreurs de stockage remontent : le client garde sa file et réessaie
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional, Set

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.exceptions import REPLAY_CONFLICTS, AttendanceError
from app.schemas.sync import OfflineSubmission, SyncResponse, SyncResult
from app.services import attendance_service
from app.timeutils import to_utc_naive

logger = logging.getLogger(__name__)


def sync_submissions(
    db: Session,
    submissions: List[OfflineSubmission],
    device_id: str = "",
    *,
    now: Optional[datetime] = None,
) -> SyncResponse:
    """Rejoue chaque soumission exactement une fois et retourne son issue."""
    results: List[SyncResult] = []

    # offline_ids déjà vus dans CE batch
    seen_in_batch: Set[uuid.UUID] = set()

    # À timestamp égal, l'entrée passe avant la sortie (durée nulle valide)
    ordered = sorted(submissions, key=lambda s: (to_utc_naive(s.timestamp), s.action != "check_in"))

    for submission in ordered:
        offline_id = str(submission.offline_id)

        if submission.offline_id in seen_in_batch:
            logger.debug("Doublon intra-batch ignoré : %s", offline_id)
            results.append(SyncResult(offline_id=offline_id, outcome="already_processed"))
            continue
        seen_in_batch.add(submission.offline_id)

        try:
            if submission.action == "check_out":
                record, applied = attendance_service.check_out(db, submission.to_check_out(), now=now)
            else:
                record, applied = attendance_service.check_in(db, submission.to_check_in(), now=now)
        except ValidationError as exc:
            # Preuves hors bornes pour la méthode (ex. latitude > 90)
            logger.warning("Soumission invalide %s : %s", offline_id, exc.errors()[0]["msg"])
            results.append(
                SyncResult(
                    offline_id=offline_id,
                    outcome="rejected",
                    error_code="INVALID_PAYLOAD",
                    message=exc.errors()[0]["msg"],
                )
            )
            continue
        except REPLAY_CONFLICTS as exc:
            logger.warning("Conflit de rejeu %s : %s (%s)", offline_id, exc.code, exc)
            results.append(
                SyncResult(offline_id=offline_id, outcome="conflict", error_code=exc.code, message=str(exc))
            )
            continue
        except AttendanceError as exc:
            logger.warning("Soumission rejetée %s : %s (%s)", offline_id, exc.code, exc)
            results.append(
                SyncResult(offline_id=offline_id, outcome="rejected", error_code=exc.code, message=str(exc))
            )
            continue

        results.append(
            SyncResult(
                offline_id=offline_id,
                outcome="confirmed" if applied else "already_processed",
                record_id=record.id,
            )
        )

    response = SyncResponse(
        results=results,
        total_received=len(submissions),
        total_confirmed=_count(results, "confirmed"),
        total_already_processed=_count(results, "already_processed"),
        total_conflicts=_count(results, "conflict"),
        total_rejected=_count(results, "rejected"),
    )

    logger.info(
        "Sync device=%s : %d reçus, %d confirmés, %d déjà traités, %d conflits, %d rejetés",
        device_id or "inconnu",
        response.total_received,
        response.total_confirmed,
        response.total_already_processed,
        response.total_conflicts,
        response.total_rejected,
    )
    return response


def _count(results: List[SyncResult], outcome: str) -> int:
    return sum(1 for r in results if r.outcome == outcome)
