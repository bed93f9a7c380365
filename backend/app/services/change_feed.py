"""
Flux de changements des présences, pour les abonnés externes (analytics,
tableaux de bord).

Diffusion « fire-and-forget » : un abonné en échec est journalisé et n'annule
jamais l'écriture qui a déclenché l'événement. Les tableaux de bord étant
recalculés et non dérivés incrémentalement, une livraison au moins une fois
suffit.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttendanceChange:
    kind: str                     # checked_in, checked_out
    record_id: uuid.UUID
    event_id: uuid.UUID
    session_id: Optional[uuid.UUID]
    subject_id: uuid.UUID
    occurred_at: datetime


Subscriber = Callable[[AttendanceChange], None]


class ChangeFeed:
    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Enregistre un abonné ; retourne la fonction de désabonnement."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, change: AttendanceChange) -> None:
        logger.debug("Changement %s — présence %s", change.kind, change.record_id)
        for subscriber in list(self._subscribers):
            try:
                subscriber(change)
            except Exception:
                logger.exception(
                    "Abonné en échec pour %s (présence %s)", change.kind, change.record_id
                )


change_feed = ChangeFeed()
