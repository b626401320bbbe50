from sqlmodel import create_engine, SQLModel, Session

from app.core.config import settings
from app.core.logging_config import get_logger

logger = get_logger(__name__)

DATABASE_URL = settings.DATABASE_URL


def _build_engine(url: str):
    if url.startswith("sqlite"):
        # SQLite needs cross-thread access because FastAPI runs sync
        # dependencies in a worker pool
        return create_engine(url, echo=False, connect_args={"check_same_thread": False})

    return create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,
        pool_timeout=30,
    )


engine = _build_engine(DATABASE_URL)


def get_session():
    with Session(engine) as session:
        yield session


def create_db_and_tables():
    # Register tables on the metadata before create_all
    import app.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Database tables ensured", url=DATABASE_URL.split("@")[-1])
