# moda/database.py
from contextlib import contextmanager
from typing import Iterator, Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from .config import settings

def create_db_engine(url: Optional[str] = None, **kwargs) -> Engine:
    """
    Engine for the drawings database.
    SQLite connections are shared with the upload worker and the
    request threadpool, so same-thread checking is turned off.
    """
    url = url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, echo=False, **kwargs)

engine = create_db_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()

# Dependency for FastAPI routes
def get_db():
    """
    Request-scoped session; routes commit explicitly
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def session_scope(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """
    Unit of work outside a request (upload worker, scripts):
    commits on success, rolls back and re-raises on error
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

def init_db(bind: Optional[Engine] = None):
    """
    Create drawing, version, folder and activity tables
    Called from main.py on startup
    """
    from .models import drawing, folder, activity  # register models on Base
    Base.metadata.create_all(bind=bind or engine)
