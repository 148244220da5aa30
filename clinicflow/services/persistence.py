"""
Persistence primitives shared by the entity services.

``conditional_write`` is the only way a status changes: the UPDATE carries
the transition's allowed source statuses (and any expected column values)
in its WHERE clause, so a row that moved on since it was read matches
nothing and the write is rejected instead of silently applied.
"""
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from clinicflow.core.exceptions import StaleState
from clinicflow.db.models import AuditLog
from clinicflow.lifecycle.transition import Transition


async def conditional_write(session: AsyncSession, model, entity_id: UUID, transition: Transition) -> None:
    stmt = update(model).where(
        model.id == entity_id,
        model.status.in_(list(transition.allowed_from)),
    )
    for column_name, expected in transition.expect.items():
        column = getattr(model, column_name)
        stmt = stmt.where(column.is_(None) if expected is None else column == expected)
    stmt = stmt.values(**transition.values()).execution_options(synchronize_session=False)

    result = await session.execute(stmt)
    if result.rowcount != 1:
        raise StaleState(model.__tablename__, entity_id)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


async def record_audit(
    session: AsyncSession,
    action: str,
    actor_id: Optional[UUID],
    entity_id: Optional[UUID],
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    entry = AuditLog(
        actor_id=actor_id,
        entity_id=entity_id,
        action=action,
        payload={key: _jsonable(value) for key, value in (payload or {}).items()},
    )
    session.add(entry)
    return entry
