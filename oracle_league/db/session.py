from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from oracle_league.core.config import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str):
    """
    Crea el engine. En SQLite activamos claves foráneas y un busy timeout
    para que los escritores concurrentes esperen en vez de fallar al instante.
    """
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 15},
        )

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(url, pool_pre_ping=True)


def make_session_factory(bind) -> sessionmaker:
    return sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = make_engine(settings.DATABASE_URL)
SessionLocal = make_session_factory(engine)


@contextmanager
def atomic(db: Session):
    """
    Transacción atómica: commit si el bloque termina, rollback si lanza.
    Evita escrituras parciales (puntuaciones a medias, contadores sueltos).
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def init_db(bind=None):
    # Importar modelos para que SQLAlchemy los "vea" antes de crear las tablas
    from oracle_league.db.models import _all  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
