# coding: utf-8
"""
Audit & Event log sinks

- Staff actions (ADMIN/SUPPORT/MANAGER) and failures go to the audit log
- USER actions go to the event log
- Writes are best effort: a failed write is logged and never raised,
  and never touches the caller's already committed mutation
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.actor import Actor
from src.core.enums import Role, ResponseStatus
from src.database.models import AuditLog, Event


class LogSink(str, Enum):
    """Where an action is recorded"""

    AUDIT = "audit"
    EVENT = "event"


def select_log_sink(role: Optional[str]) -> LogSink:
    """
    Single place where the role decides the sink

    Args:
        role: Actor role (USER/ADMIN/SUPPORT/MANAGER)

    Returns:
        LogSink.AUDIT for staff roles, LogSink.EVENT otherwise
    """
    return LogSink.AUDIT if Role.is_staff(role) else LogSink.EVENT


def to_json(value: Any) -> Any:
    """Make details JSON-serializable (datetimes -> ISO strings, enums -> values)"""
    if isinstance(value, dict):
        return {str(key): to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


async def _rollback_quietly(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except Exception as e:
        logger.error(f"Rollback after failed log write also failed: {e}")


async def create_audit_log(
    session: AsyncSession,
    actor: Actor,
    action: str,
    target_type: str,
    target_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    response_status: str = ResponseStatus.SUCCESS.value,
) -> Optional[AuditLog]:
    """
    Append an audit log entry in its own commit

    Args:
        session: Database session (the caller's mutation must already be committed)
        actor: Who performed the action
        action: AuditAction value
        target_type: AuditTargetType value
        target_id: Affected entity ID
        details: Free-form JSON details
        response_status: SUCCESS or FAILURE

    Returns:
        Created AuditLog, or None if the write failed
    """
    try:
        entry = AuditLog(
            actor_id=actor.id,
            actor_role=actor.role,
            action=getattr(action, "value", action),
            target_type=getattr(target_type, "value", target_type),
            target_id=target_id,
            response_status=getattr(response_status, "value", response_status),
            details=to_json(details or {}),
        )
        session.add(entry)
        await session.commit()

        logger.debug(f"Audit: {entry.action} by {actor.id} ({actor.role}) -> {entry.response_status}")
        return entry

    except Exception as e:
        logger.exception(f"Failed to write audit log {action} for {actor.id}: {e}")
        await _rollback_quietly(session)
        return None


async def create_event_log(
    session: AsyncSession,
    user_id: str,
    event_type: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[Event]:
    """
    Append a user event in its own commit

    Returns:
        Created Event, or None if the write failed
    """
    try:
        event = Event(
            user_id=user_id,
            event_type=getattr(event_type, "value", event_type),
            event_metadata=to_json(metadata or {}),
        )
        session.add(event)
        await session.commit()

        logger.debug(f"Event: {event.event_type} by user {user_id}")
        return event

    except Exception as e:
        logger.exception(f"Failed to write event {event_type} for user {user_id}: {e}")
        await _rollback_quietly(session)
        return None


async def record(
    session: AsyncSession,
    actor: Actor,
    action: str,
    event_type: str,
    target_type: str,
    target_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
):
    """
    Record a successful action in the sink selected for the actor's role

    Args:
        action: AuditAction used when the audit log is selected
        event_type: EventType used when the event log is selected

    Returns:
        AuditLog, Event, or None if the write failed
    """
    if select_log_sink(actor.role) is LogSink.AUDIT:
        return await create_audit_log(
            session, actor, action, target_type, target_id=target_id, details=details
        )

    metadata = dict(details or {})
    metadata.setdefault("targetId", target_id)
    return await create_event_log(session, actor.id, event_type, metadata)


async def record_failure(
    session: AsyncSession,
    actor: Actor,
    action: str,
    target_type: str,
    reason: str,
    target_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Optional[AuditLog]:
    """
    Record a failed operation (always audit log, whatever the role)
    """
    payload = {"reason": reason, "email": actor.email}
    payload.update(details or {})
    return await create_audit_log(
        session,
        actor,
        action,
        target_type,
        target_id=target_id,
        details=payload,
        response_status=ResponseStatus.FAILURE.value,
    )
