"""
Contrôle de géolocalisation des check-ins : précision minimale et périmètre
(geofence) autour du lieu de l'événement.
"""

import math

from app.config import settings
from app.exceptions import LocationAccuracyTooLow, LocationTooFar
from app.models.event import Event

EARTH_RADIUS_METERS = 6371e3


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Distance orthodromique en mètres entre deux points (degrés décimaux)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def validate_geolocation(event: Event, latitude: float, longitude: float, accuracy: float) -> float:
    """
    Vérifie un check-in géolocalisé et retourne la distance au lieu (0 si
    l'événement n'a pas de coordonnées : seule la précision est contrôlée).

    Lève LocationAccuracyTooLow ou LocationTooFar.
    """
    if accuracy > settings.LOCATION_ACCURACY_THRESHOLD_METERS:
        raise LocationAccuracyTooLow(
            f"Précision de {accuracy:.0f} m, maximum "
            f"{settings.LOCATION_ACCURACY_THRESHOLD_METERS:.0f} m."
        )

    if event.latitude is None or event.longitude is None:
        return 0.0

    distance = haversine_distance(latitude, longitude, event.latitude, event.longitude)
    radius = event.geofence_radius_meters or settings.DEFAULT_GEOFENCE_RADIUS_METERS
    if distance > radius:
        raise LocationTooFar(f"Position à {distance:.0f} m du lieu, rayon autorisé {radius:.0f} m.")
    return distance
