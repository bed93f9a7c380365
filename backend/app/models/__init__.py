# Importe tous les modèles pour enregistrer leurs tables dans Base.metadata
# avant que SQLAlchemy tente de résoudre les clés étrangères inter-modèles.
# attendance_records référence events et event_sessions : ils doivent précéder.

from app.models.event import Event, EventParticipant  # noqa: F401
from app.models.session import EventSession  # noqa: F401
from app.models.attendance import AttendanceRecord  # noqa: F401
