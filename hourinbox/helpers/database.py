# hourinbox/helpers/database.py
"""Database session helpers for all blueprints."""

from contextlib import contextmanager
import importlib
import os

# Lazy imports to avoid circular dependencies
_SessionLocal = None
_models = None
_engine = None


def _default_database_url() -> str:
    database_path = os.path.join(
        os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
        "hourinbox.db"
    )
    return os.getenv("DATABASE_URL", f"sqlite:///{database_path}")


def init_engine(database_url: str = None):
    """(Re-)Initialisiert Engine und Session-Factory.

    Wird von create_app() aufgerufen; Tests übergeben eine eigene SQLite-URL.
    Legt fehlende Tabellen an.
    """
    global _engine, _SessionLocal
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker

    if _engine is not None:
        _engine.dispose()

    url = database_url or _default_database_url()

    # Dialect-aware Engine Configuration
    if url.startswith("sqlite"):
        _engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30.0}
        )
    else:
        _engine = create_engine(
            url,
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,
            connect_args={"connect_timeout": 10}
        )

    _get_models().Base.metadata.create_all(_engine)
    _SessionLocal = sessionmaker(bind=_engine, expire_on_commit=False)
    return _engine


def _get_session_local():
    """Get or create SQLAlchemy SessionLocal factory (cached)."""
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


def _get_models():
    """Lazy load models module to avoid circular imports."""
    global _models
    if _models is None:
        _models = importlib.import_module(".02_models", "hourinbox")
    return _models


@contextmanager
def get_db_session():
    """Context manager for database sessions.

    Usage:
        with get_db_session() as db:
            org = db.query(Organization).filter_by(domain=domain).first()

    Yields:
        SQLAlchemy session that auto-closes on exit
    """
    SessionLocal = _get_session_local()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def find_organization_by_domain(db, domain: str):
    models = _get_models()
    return db.query(models.Organization).filter_by(domain=domain.lower()).first()


def find_organization(db, org_id: str):
    models = _get_models()
    return db.query(models.Organization).filter_by(id=org_id).first()
