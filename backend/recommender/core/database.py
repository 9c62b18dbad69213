import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from recommender.core.config import settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_engine_lock = threading.Lock()

SessionLocal = sessionmaker(autocommit=False, autoflush=False)


def get_engine() -> Engine:
    """Create the relational engine on first use and bind SessionLocal to it."""
    global _engine
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                kwargs = {"pool_pre_ping": True}
                if not settings.database_url.startswith("sqlite"):
                    # pool_recycle: recycle connections after N seconds to prevent stale connections
                    kwargs.update(pool_size=10, max_overflow=20, pool_timeout=30, pool_recycle=3600)
                _engine = create_engine(settings.database_url, **kwargs)
                SessionLocal.configure(bind=_engine)
    return _engine


def get_db():
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def suppressed_query_logging(engine: Optional[Engine] = None) -> Iterator[None]:
    """Suspend SQL statement logging for the duration of a long run.

    Engine ``echo`` and the ``sqlalchemy.engine`` logger level are restored on
    every exit path, including failures.
    """
    sa_logger = logging.getLogger("sqlalchemy.engine")
    previous_level = sa_logger.level
    previous_echo = engine.echo if engine is not None else None
    try:
        if engine is not None:
            engine.echo = False
        sa_logger.setLevel(logging.WARNING)
        yield
    finally:
        sa_logger.setLevel(previous_level)
        if engine is not None:
            engine.echo = previous_echo
