from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from app_config import MaintenanceSettings

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite n'applique les clés étrangères qu'avec ce pragma, par connexion
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str, **kwargs) -> Engine:
    """Crée le moteur SQLAlchemy pour l'URL donnée"""
    engine = create_engine(database_url, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine):
    """Crée toutes les tables manquantes"""
    # Import nécessaire pour enregistrer les modèles sur Base.metadata
    import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope(settings: Optional[MaintenanceSettings] = None) -> Iterator[Session]:
    """
    Ouvre une session pour toute la durée d'un balayage

    La session est fermée et le moteur libéré à chaque sortie
    (succès, erreur ou retour anticipé).
    """
    settings = settings or MaintenanceSettings.from_env()
    engine = create_db_engine(settings.database_url)
    SessionLocal = create_session_factory(engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()
