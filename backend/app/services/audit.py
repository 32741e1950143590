from __future__ import annotations

import enum
import logging
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.audit_log import AuditLog

if TYPE_CHECKING:
    from app.services.authorization import Caller

logger = logging.getLogger("clinic_pms.audit")


def _json_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def snapshot_model(obj: Any | None) -> dict | None:
    if obj is None:
        return None
    data: dict[str, Any] = {}
    mapper = inspect(obj).mapper
    for column in mapper.columns:
        key = column.key
        data[key] = _json_value(getattr(obj, key))
    return data


def log_event(
    db: Session,
    *,
    actor: "Caller | None",
    action: str,
    entity_type: str,
    entity_id: object,
    summary: str | None = None,
    before_data: dict | None = None,
    after_obj: Any | None = None,
    after_data: dict | None = None,
) -> AuditLog | None:
    """Append an audit entry in its own commit.

    Called after the primary change has been committed. A failure here is
    logged and swallowed so the audit trail never blocks the operation it
    describes.
    """
    entry = AuditLog(
        actor_user_id=actor.user_id if actor else None,
        actor_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        summary=summary,
        request_id=actor.request_id if actor else None,
        ip_address=actor.ip_address if actor else None,
        before_json=before_data,
        after_json=after_data if after_data is not None else snapshot_model(after_obj),
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Audit write failed for %s %s:%s", action, entity_type, entity_id)
        return None
    return entry


def audit_entries(
    db: Session,
    *,
    entity_type: str | None = None,
    entity_id: object | None = None,
    action: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[AuditLog]:
    stmt = select(AuditLog)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        stmt = stmt.where(AuditLog.entity_id == str(entity_id))
    if action:
        stmt = stmt.where(AuditLog.action == action)
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).offset(offset)
    return list(db.scalars(stmt))
