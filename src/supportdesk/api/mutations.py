"""Single-statement, org-scoped writes shared by the mutation endpoints.

Each update or delete is one ``... WHERE org_id = :org AND id = :id RETURNING``
statement. Zero rows back means ``NotFound``, whether the row never existed or
belongs to another organization; callers cannot tell the two apart.
"""

import uuid
from typing import Any

from sqlalchemy import case, delete, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Executable

from supportdesk.api.errors import BackendFailure, Conflict, NotFound, translate_backend_error
from supportdesk.common.utils import utc_now

Conflicts = dict[BackendFailure, Conflict] | None


def touch_if_changed(model: Any, updates: dict[str, Any], ignore: tuple[str, ...] = ()) -> dict[str, Any]:
    """Add an ``updated_at`` bump that only fires when a tracked value changes.

    Replaying an identical PATCH therefore returns an identical representation.
    """
    changed = [getattr(model, key).is_distinct_from(value) for key, value in updates.items() if key not in ignore]
    if not changed:
        return dict(updates)
    return {**updates, "updated_at": case((or_(*changed), utc_now()), else_=model.updated_at)}


async def execute_scoped(
    db: AsyncSession,
    stmt: Executable,
    *,
    failure_message: str,
    not_found: NotFound,
    conflicts: Conflicts = None,
) -> Any:
    """Run one RETURNING statement, commit, and return its single result."""
    try:
        result = await db.execute(stmt)
        row = result.scalars().one_or_none()
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise translate_backend_error(exc, failure_message, conflicts, not_found) from exc
    if row is None:
        raise not_found
    return row


async def update_scoped(
    db: AsyncSession,
    model: Any,
    org_id: uuid.UUID,
    item_id: uuid.UUID,
    updates: dict[str, Any],
    *,
    failure_message: str,
    not_found: NotFound,
    conflicts: Conflicts = None,
    returning: Any = None,
    ignore: tuple[str, ...] = (),
) -> Any:
    stmt = (
        update(model)
        .where(model.org_id == org_id, model.id == item_id)
        .values(**touch_if_changed(model, updates, ignore))
        .returning(returning if returning is not None else model)
        .execution_options(synchronize_session=False, populate_existing=True)
    )
    return await execute_scoped(
        db, stmt, failure_message=failure_message, not_found=not_found, conflicts=conflicts
    )


async def delete_scoped(
    db: AsyncSession,
    model: Any,
    org_id: uuid.UUID,
    item_id: uuid.UUID,
    *,
    failure_message: str,
    not_found: NotFound,
    conflicts: Conflicts = None,
) -> Any:
    stmt = (
        delete(model)
        .where(model.org_id == org_id, model.id == item_id)
        .returning(model)
        .execution_options(synchronize_session=False)
    )
    return await execute_scoped(
        db, stmt, failure_message=failure_message, not_found=not_found, conflicts=conflicts
    )


async def insert_row(db: AsyncSession, row: Any, *, failure_message: str, conflicts: Conflicts = None) -> Any:
    """Insert ``row``, commit, and reload server-side defaults."""
    db.add(row)
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise translate_backend_error(exc, failure_message, conflicts) from exc
    await db.refresh(row)
    return row
