from __future__ import annotations
from typing import Optional, Dict, Any
from datetime import datetime
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from uam.models.audit import AuditLog
from uam.utils.audit_sink import write_event
from uam.metrics import audit_failures_total

logger = logging.getLogger(__name__)

def record_audit(
    db: Session,
    action: str,
    actor: Optional[str],
    module: str,
    table_name: str,
    record_id: Optional[int],
    old_value: Optional[Dict[str, Any]] = None,
    new_value: Optional[Dict[str, Any]] = None,
    comment: Optional[str] = None,
) -> Optional[AuditLog]:
    """
    Persist audit to DB and mirror to filesystem as JSONL.

    Called after the business transaction has committed. Audit is
    best-effort: a failure is logged and counted, never raised.
    """
    row = AuditLog(
        action=action,
        actor=actor,
        module=module,
        table_name=table_name,
        record_id=record_id,
        old_value=old_value or {},
        new_value=new_value or {},
        comment=comment,
    )
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as e:
        db.rollback()
        audit_failures_total.inc()
        logger.warning("audit write failed for %s %s#%s: %s", action, table_name, record_id, e)
        return None

    try:
        write_event({
            "id": row.id,
            "action": row.action,
            "actor": row.actor,
            "module": row.module,
            "table": row.table_name,
            "record_id": row.record_id,
            "old_value": row.old_value or {},
            "new_value": row.new_value or {},
            "comment": row.comment,
            "created_at": row.created_at.isoformat() if row.created_at else datetime.utcnow().isoformat(),
        })
    except OSError as e:
        audit_failures_total.inc()
        logger.warning("audit mirror write failed for audit #%s: %s", row.id, e)
    return row
