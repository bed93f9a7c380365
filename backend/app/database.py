"""
Connexion à la base des présences.

PostgreSQL en production ; une URL SQLite est acceptée pour le développement
local (l'index unique partiel des présences ouvertes existe sur les deux).
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker

from app.config import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Sessions servies depuis le pool de threads de FastAPI
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dépendance FastAPI : une session par requête, fermée après la réponse."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
