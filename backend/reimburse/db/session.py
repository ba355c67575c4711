"""Database sessions and the per-operation transaction boundary.

Two engines, as the workflow services are sync (shared with Celery workers)
while simple reads in the API layer use the async engine.
"""
import logging
from collections.abc import AsyncGenerator, Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from reimburse.core.config import settings
from reimburse.core.errors import TransactionFailedError, WorkflowError

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_pre_ping=True,
    pool_size=10,
    max_overflow=20,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

sync_engine = create_engine(settings.DATABASE_URL_SYNC, pool_pre_ping=True)

SyncSessionLocal = sessionmaker(bind=sync_engine, expire_on_commit=False)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_sync_session() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a sync session for workflow services."""
    db = SyncSessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session) -> Iterator[Session]:
    """Run one workflow transition as a single transaction.

    Commits when the block exits cleanly. Business errors roll back and
    propagate unchanged; storage errors roll back and surface as
    TransactionFailedError so callers can tell them apart.
    """
    try:
        yield db
        db.commit()
    except WorkflowError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Transaction rolled back: %s", exc, exc_info=True)
        raise TransactionFailedError("The change could not be saved; nothing was applied.") from exc
    except Exception:
        db.rollback()
        raise
