"""Database engine, session factory and declarative base shared by all services."""
from typing import Generator, Iterable, List, Type, TypeVar

from sqlalchemy import create_engine, select, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import get_settings

settings = get_settings()

connect_args = {}
if settings.database_url.startswith("sqlite"):
    # Writers wait up to 30s for the database lock.
    connect_args = {"check_same_thread": False, "timeout": 30}

engine = create_engine(settings.database_url, connect_args=connect_args, pool_pre_ping=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


ModelType = TypeVar("ModelType", bound=Base)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session that is always closed afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def lock_rows(db: Session, model: Type[ModelType], ids: Iterable[int]) -> List[ModelType]:
    """Load ``model`` rows by id while holding a write lock until the transaction ends.

    PostgreSQL takes row locks in id order so concurrent callers touching the same rows
    queue up behind each other. SQLite has no row locks, so the whole database is
    reserved with ``BEGIN IMMEDIATE``; this must be the first write of the transaction.
    """
    id_list = sorted(set(ids))
    if db.get_bind().dialect.name == "sqlite":
        db.execute(text("BEGIN IMMEDIATE"))
        stmt = select(model).where(model.id.in_(id_list)).order_by(model.id)
    else:
        stmt = select(model).where(model.id.in_(id_list)).order_by(model.id).with_for_update()
    return list(db.scalars(stmt).all())
