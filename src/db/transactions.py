"""Unit-of-work helpers shared by the quota services."""
from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.errors import TransactionFailure
from src.utils.logger import get_logger

logger = get_logger("db")


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """Run a multi-step mutation on ``db`` as one unit of work.

    Commits on success. Any failure rolls back everything written inside the
    block; store errors are re-raised as ``TransactionFailure``.
    """

    try:
        yield db
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Transaction rolled back after store error")
        raise TransactionFailure("Store failure during transaction; no changes were applied") from exc
    except Exception:
        db.rollback()
        raise


def insert_if_absent(db: Session, model: type, **values: Any) -> None:
    """Insert a row unless it collides with an existing unique key."""

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql_insert(model).values(**values).on_conflict_do_nothing()
    elif dialect == "sqlite":
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing()
    else:
        try:
            with db.begin_nested():
                db.add(model(**values))
        except IntegrityError:
            # Row already exists.
            pass
        return
    db.execute(stmt)
