"""
Schémas Pydantic pour le pointage (check-in / check-out).

Le corps d'un check-in est une union discriminée sur `method` : chaque méthode
impose ses propres champs (coordonnées pour la géolocalisation, référence de
gabarit pour la biométrie, ...). Un payload incomplet est rejeté en 422 avant
d'atteindre le service.
"""

import uuid
from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

CHECK_IN_METHODS = ("qr_code", "geolocation", "manual", "biometric", "nfc")


class _CheckInBase(BaseModel):
    event_id: uuid.UUID
    subject_id: uuid.UUID
    session_id: Optional[uuid.UUID] = None
    timestamp: Optional[datetime] = None      # Absent → heure serveur
    offline_id: Optional[uuid.UUID] = None    # Renseigné lors d'un rejeu offline
    device_info: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None


class QrCodeCheckIn(_CheckInBase):
    method: Literal["qr_code"]
    qr_code_data: str

    @field_validator("qr_code_data")
    @classmethod
    def qr_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Le contenu du QR code ne peut pas être vide.")
        return v.strip()


class GeolocationCheckIn(_CheckInBase):
    method: Literal["geolocation"]
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: float = Field(ge=0)             # Rayon d'incertitude en mètres


class BiometricCheckIn(_CheckInBase):
    method: Literal["biometric"]
    template_ref: str

    @field_validator("template_ref")
    @classmethod
    def template_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("La référence biométrique ne peut pas être vide.")
        return v.strip()


class NfcCheckIn(_CheckInBase):
    method: Literal["nfc"]
    token_uid: str

    @field_validator("token_uid")
    @classmethod
    def token_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("L'identifiant du badge NFC ne peut pas être vide.")
        return v.strip()


class ManualCheckIn(_CheckInBase):
    method: Literal["manual"]
    marked_by: uuid.UUID                      # Organisateur qui saisit la présence


CheckInRequest = Annotated[
    Union[QrCodeCheckIn, GeolocationCheckIn, BiometricCheckIn, NfcCheckIn, ManualCheckIn],
    Field(discriminator="method"),
]

check_in_adapter = TypeAdapter(CheckInRequest)


class CheckOutRequest(BaseModel):
    """Clôture par `record_id`, ou par clé (event_id, session_id?, subject_id)."""

    record_id: Optional[uuid.UUID] = None
    event_id: Optional[uuid.UUID] = None
    session_id: Optional[uuid.UUID] = None
    subject_id: Optional[uuid.UUID] = None
    timestamp: Optional[datetime] = None
    offline_id: Optional[uuid.UUID] = None

    @model_validator(mode="after")
    def record_or_key(self) -> "CheckOutRequest":
        if self.record_id is None and (self.event_id is None or self.subject_id is None):
            raise ValueError("Fournir record_id, ou event_id et subject_id.")
        return self


class AttendanceRecordResponse(BaseModel):
    id: uuid.UUID
    event_id: uuid.UUID
    session_id: Optional[uuid.UUID]
    subject_id: uuid.UUID
    method: str
    status: str
    check_in_time: datetime
    check_out_time: Optional[datetime]
    duration_seconds: Optional[int]
    offline_id: Optional[uuid.UUID]
    recorded_at: Optional[datetime]

    model_config = {"from_attributes": True}
