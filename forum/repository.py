"""
Relational data-access functions shared by the loaders and services.

Every relation traversal in the application goes through one of these
(or a service query) so the number of round trips is always explicit.
SQLAlchemy errors are translated into ``StoreFailure``.
"""
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

from sqlalchemy import inspect, select, tuple_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from forum.errors import DomainError, StoreFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


def primary_key_of(instance) -> Any:
    """Return the identity of *instance*: a scalar, or a tuple for composite keys."""
    values = inspect(type(instance)).primary_key_from_instance(instance)
    return values[0] if len(values) == 1 else tuple(values)


async def find_by_id(db: AsyncSession, model: type[T], ident: Any) -> T | None:
    try:
        return await db.get(model, ident)
    except SQLAlchemyError as exc:
        logger.error("find_by_id(%s, %r) failed: %s", model.__name__, ident, exc)
        raise StoreFailure(f"Failed to load {model.__name__}") from exc


async def find_many_by_ids(db: AsyncSession, model: type[T], idents: Iterable[Any]) -> dict[Any, T]:
    """
    Fetch every row of *model* whose primary key is in *idents* with a
    single SELECT.

    Returns a mapping of key -> instance; keys without a row are omitted.
    Composite primary keys are passed and returned as tuples.
    """
    idents = list(idents)
    if not idents:
        return {}

    pk_cols = inspect(model).primary_key
    if len(pk_cols) == 1:
        clause = pk_cols[0].in_(idents)
    else:
        clause = tuple_(*pk_cols).in_([tuple(i) for i in idents])

    try:
        result = await db.execute(select(model).where(clause))
    except SQLAlchemyError as exc:
        logger.error("find_many_by_ids(%s, %d keys) failed: %s", model.__name__, len(idents), exc)
        raise StoreFailure(f"Failed to load {model.__name__} rows") from exc
    return {primary_key_of(row): row for row in result.scalars().all()}


async def run_atomic(db: AsyncSession, unit: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """
    Run *unit* against *db* and commit; all of its writes land or none do.

    Domain errors raised by the unit roll back and propagate unchanged.
    Database errors roll back and surface as ``StoreFailure``. There is
    no automatic retry.
    """
    try:
        result = await unit(db)
        await db.commit()
    except DomainError:
        await db.rollback()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Atomic unit aborted: %s", exc)
        raise StoreFailure("Atomic unit aborted") from exc
    return result
