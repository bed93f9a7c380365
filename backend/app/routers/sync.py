"""
Router pour la synchronisation offline → online.
Reçoit les pointages mis en file par les clients et les rejoue avec idempotence.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.sync import SyncRequest, SyncResponse
from app.services import sync_service

router = APIRouter(prefix="/api/v1/attendance", tags=["Synchronisation offline"])


@router.post(
    "/sync",
    response_model=SyncResponse,
    summary="Synchroniser les pointages offline",
)
def sync_attendances(data: SyncRequest, db: Session = Depends(get_db)):
    """
    Rejoue un batch de pointages générés hors-ligne.

    Comportement :
    - Ordre chronologique des timestamps d'origine, pas ordre d'arrivée
    - Idempotent : un offline_id déjà connu → `already_processed` (pas d'erreur)
    - Conflits de rejeu (déjà présent, aucune présence ouverte) → `conflict`
      sans interrompre le batch
    - Issues `confirmed`, `already_processed`, `conflict` et `rejected` toutes
      terminales : le client retire l'entrée de sa file

    Une erreur 5xx signifie que rien n'est garanti pour les entrées non
    confirmées : le client les renvoie plus tard (rejeu sans risque).
    """
    return sync_service.sync_submissions(db, data.submissions, data.device_id)
