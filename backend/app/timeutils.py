"""
Normalisation des timestamps : tout est comparé et stocké en UTC naïf.
Les clients envoient de l'ISO 8601 avec ou sans fuseau ; sans fuseau = UTC.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def resolve_now(now: Optional[datetime]) -> datetime:
    """Heure de référence d'un appel de service (injectable pour les tests)."""
    return to_utc_naive(now) if now is not None else utcnow()


def percentage(part: int, whole: int) -> int:
    """Pourcentage entier arrondi au demi supérieur (0 si whole == 0)."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)
