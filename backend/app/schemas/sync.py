"""
Schémas Pydantic pour la synchronisation offline → online.
Endpoint : POST /api/v1/attendance/sync
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, field_validator, model_validator

from app.config import settings
from app.schemas.attendance import CHECK_IN_METHODS, CheckInRequest, CheckOutRequest, check_in_adapter

# Champs exigés par méthode pour un check-in rejoué
REQUIRED_EVIDENCE = {
    "qr_code": ("qr_code_data",),
    "geolocation": ("latitude", "longitude", "accuracy"),
    "biometric": ("template_ref",),
    "nfc": ("token_uid",),
    "manual": ("marked_by",),
}

SyncOutcome = Literal["confirmed", "already_processed", "conflict", "rejected"]


class OfflineSubmission(BaseModel):
    """Un pointage mis en file côté client pendant une coupure réseau."""

    offline_id: uuid.UUID         # UUID généré par le client, clé d'idempotence
    event_id: uuid.UUID
    subject_id: uuid.UUID
    session_id: Optional[uuid.UUID] = None
    method: str
    timestamp: datetime           # Heure locale du pointage (avant réseau)
    action: Literal["check_in", "check_out"] = "check_in"
    device_info: Optional[Dict[str, Any]] = None

    # Preuves selon la méthode
    qr_code_data: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    accuracy: Optional[float] = None
    template_ref: Optional[str] = None
    token_uid: Optional[str] = None
    marked_by: Optional[uuid.UUID] = None
    notes: Optional[str] = None

    @field_validator("method")
    @classmethod
    def valid_method(cls, v: str) -> str:
        if v not in CHECK_IN_METHODS:
            raise ValueError(f"Méthode de pointage invalide. Valeurs acceptées : {CHECK_IN_METHODS}")
        return v

    @model_validator(mode="after")
    def evidence_present(self) -> "OfflineSubmission":
        if self.action == "check_in":
            missing = [f for f in REQUIRED_EVIDENCE[self.method] if getattr(self, f) is None]
            if missing:
                raise ValueError(f"Champs manquants pour la méthode {self.method} : {', '.join(missing)}")
        return self

    def to_check_in(self) -> CheckInRequest:
        fields = {"event_id", "subject_id", "session_id", "method", "timestamp", "device_info", "notes"}
        fields.update(REQUIRED_EVIDENCE[self.method])
        payload = self.model_dump(include=fields)
        payload["offline_id"] = self.offline_id
        return check_in_adapter.validate_python(payload)

    def to_check_out(self) -> CheckOutRequest:
        return CheckOutRequest(
            event_id=self.event_id,
            session_id=self.session_id,
            subject_id=self.subject_id,
            timestamp=self.timestamp,
            offline_id=self.offline_id,
        )


class SyncRequest(BaseModel):
    """Corps de la requête batch de synchronisation."""

    submissions: List[OfflineSubmission]
    device_id: str = ""           # Identifiant de l'appareil (pour les logs)

    @field_validator("submissions")
    @classmethod
    def batch_not_too_large(cls, v: List[OfflineSubmission]) -> List[OfflineSubmission]:
        if len(v) > settings.MAX_SYNC_BATCH_SIZE:
            raise ValueError(
                f"Batch trop grand : maximum {settings.MAX_SYNC_BATCH_SIZE} pointages par requête."
            )
        return v


class SyncResult(BaseModel):
    """Issue du rejeu d'une soumission. Toutes les issues sont terminales pour le client."""

    offline_id: str
    outcome: SyncOutcome
    record_id: Optional[uuid.UUID] = None
    error_code: Optional[str] = None
    message: Optional[str] = None


class SyncResponse(BaseModel):
    """Rapport de synchronisation retourné par le serveur."""

    results: List[SyncResult]
    total_received: int
    total_confirmed: int
    total_already_processed: int
    total_conflicts: int
    total_rejected: int
