# uam/crud/access_log.py
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from uam.models.access_log import AccessLogEntry
from uam.services.closure import normalize_identity


def list_access_log(
    db: Session,
    plant_id: Optional[int] = None,
    department_id: Optional[int] = None,
    application_id: Optional[int] = None,
    requester: Optional[str] = None,
    task_status: Optional[str] = None,
    request_id: Optional[int] = None,
    limit: int = 200,
    offset: int = 0,
) -> List[AccessLogEntry]:
    """Access log rows, most recently updated first. `requester` matches the normalized requester key."""
    stmt = select(AccessLogEntry)
    if plant_id is not None:
        stmt = stmt.where(AccessLogEntry.plant_id == plant_id)
    if department_id is not None:
        stmt = stmt.where(AccessLogEntry.department_id == department_id)
    if application_id is not None:
        stmt = stmt.where(AccessLogEntry.application_id == application_id)
    if requester and requester.strip():
        stmt = stmt.where(AccessLogEntry.requester_key == normalize_identity(requester))
    if task_status:
        stmt = stmt.where(AccessLogEntry.task_status == task_status)
    if request_id is not None:
        stmt = stmt.where(AccessLogEntry.request_id == request_id)
    stmt = stmt.order_by(AccessLogEntry.updated_on.desc(), AccessLogEntry.id.desc()).limit(limit).offset(offset)
    return list(db.execute(stmt).scalars())
