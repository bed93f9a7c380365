"""
Erreurs métier du cœur de présence.

Toutes héritent de ValueError (convention des services : lever ValueError,
les routers traduisent en HTTPException). Chaque classe porte un `code`
stable, renvoyé tel quel au client, et le statut HTTP correspondant.
"""

from typing import Optional


class AttendanceError(ValueError):
    """Erreur métier corrigeable côté client."""

    code = "ATTENDANCE_ERROR"
    status_code = 400
    default_message = "Requête de présence invalide."

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    def to_detail(self) -> dict:
        return {"code": self.code, "message": str(self)}


class InvalidTimestamp(AttendanceError):
    code = "INVALID_TIMESTAMP"
    default_message = "Le timestamp est dans le futur au-delà de la tolérance d'horloge."


class ClockSkewError(AttendanceError):
    code = "CLOCK_SKEW"
    default_message = "La sortie ne peut pas précéder l'entrée."


class AlreadyCheckedIn(AttendanceError):
    code = "ALREADY_CHECKED_IN"
    status_code = 409
    default_message = "Une présence est déjà ouverte pour ce participant."


class NoOpenRecord(AttendanceError):
    code = "NO_OPEN_RECORD"
    status_code = 409
    default_message = "Aucune présence ouverte pour ce participant."


class EventNotFound(AttendanceError):
    code = "EVENT_NOT_FOUND"
    status_code = 404
    default_message = "Événement introuvable."


class SessionNotFound(AttendanceError):
    code = "SESSION_NOT_FOUND"
    status_code = 404
    default_message = "Session introuvable pour cet événement."


class RecordNotFound(AttendanceError):
    code = "RECORD_NOT_FOUND"
    status_code = 404
    default_message = "Enregistrement de présence introuvable."


class EventClosed(AttendanceError):
    code = "EVENT_CLOSED"
    status_code = 409
    default_message = "L'événement est annulé : aucun pointage accepté."


class SubjectHasNoAccess(AttendanceError):
    code = "SUBJECT_HAS_NO_ACCESS"
    status_code = 403
    default_message = "Le participant n'est pas inscrit à cet événement."


class LocationTooFar(AttendanceError):
    code = "LOCATION_TOO_FAR"
    default_message = "Position hors du périmètre de l'événement."


class LocationAccuracyTooLow(AttendanceError):
    code = "LOCATION_ACCURACY_LOW"
    default_message = "Précision de la géolocalisation insuffisante."


# Conflits d'ordre de rejeu : un batch offline les déclasse en `conflict`
REPLAY_CONFLICTS = (AlreadyCheckedIn, NoOpenRecord, ClockSkewError)
