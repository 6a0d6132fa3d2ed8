"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Row locking for ledger read-modify-write cycles
- Skip-locked batch reads for queue workers
- Atomic status-guarded claims (compare-and-set on a status column)
- Compare-and-set on counter columns
"""

import logging
from typing import Iterable, Optional, TypeVar, Type

from sqlalchemy import update
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

T = TypeVar('T')


def is_postgres(db: Session) -> bool:
    """Check if the database is PostgreSQL"""
    try:
        return db.bind.dialect.name == 'postgresql'
    except AttributeError:
        return False


def acquire_row_lock(
    db: Session,
    model: Type[T],
    filter_condition,
    nowait: bool = False,
    skip_locked: bool = False
) -> Optional[T]:
    """
    Acquire a row-level lock on a database record.

    Locking is applied on PostgreSQL only; SQLite serializes writers at the
    database level.

    Example:
        inventory = acquire_row_lock(db, EpisodeInventory, EpisodeInventory.episode_id == episode_id)
    """
    query = db.query(model).filter(filter_condition)

    if is_postgres(db):
        if skip_locked:
            query = query.with_for_update(skip_locked=True)
        elif nowait:
            query = query.with_for_update(nowait=True)
        else:
            query = query.with_for_update()

    return query.first()


def get_pending_with_skip_locked(
    db: Session,
    model: Type[T],
    filter_condition,
    order_by: Iterable = (),
    limit: int = 50
) -> list:
    """
    Get pending records with skip_locked to prevent worker race conditions.

    Other workers polling the same table skip rows this transaction holds.
    """
    query = db.query(model).filter(filter_condition)

    for clause in order_by:
        query = query.order_by(clause)

    if is_postgres(db):
        query = query.with_for_update(skip_locked=True)

    return query.limit(limit).all()


def claim_by_status(
    db: Session,
    model,
    row_id: str,
    from_statuses: Iterable[str],
    values: dict
) -> bool:
    """
    Atomically move one row out of one of `from_statuses`.

    Issues `UPDATE ... WHERE id = :id AND status IN (...)`; exactly one
    concurrent caller sees rowcount == 1. Does not commit.
    """
    stmt = (
        update(model)
        .where(model.id == row_id, model.status.in_(list(from_statuses)))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    claimed = result.rowcount == 1
    if not claimed:
        logger.debug(f"Claim lost for {model.__name__} {row_id}")
    return claimed


def compare_and_set(
    db: Session,
    model,
    row_id: str,
    expected: dict,
    values: dict
) -> bool:
    """
    Write `values` only if every column in `expected` still holds the value read.

    Issues `UPDATE ... WHERE id = :id AND col = :seen ...`. A writer that
    committed in between makes rowcount 0 and the caller re-reads. Does not
    commit.
    """
    conditions = [getattr(model, column) == seen for column, seen in expected.items()]
    stmt = (
        update(model)
        .where(model.id == row_id, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1
