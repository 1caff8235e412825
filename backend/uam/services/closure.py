"""
Upserts for the two projections admission reads back: the access log
(keyed by request id + task id) and task closure details (keyed by RITM +
TASK numbers, or a key bound when the task was closed). This module owns the
mapping from a request/task pair to both keys; callers never assemble
projection rows themselves.
"""
from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
import logging

import bcrypt
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from uam.core.errors import ValidationError
from uam.models.access_log import AccessLogEntry
from uam.models.access_request import AccessRequest, RequestTask
from uam.models.closure import ClosureRecord

logger = logging.getLogger(__name__)

CLOSURE_FIELDS = (
    "request_by", "employee_code", "name", "description", "location", "plant_name",
    "department", "application_name", "requested_role", "request_status",
    "assignment_group", "assigned_to", "allocated_id", "role_granted", "access",
    "additional_info", "remarks", "status", "access_request_type",
    "user_request_type", "from_date", "to_date",
)

ACCESS_LOG_FIELDS = (
    "ritm_number", "task_number", "plant_id", "department_id", "application_id",
    "role_id", "requester_key", "request_for_by", "name", "vendor_name",
    "access_request_type", "task_status", "request_status", "approver1_status",
    "approver1_email", "approver1_name", "approver2_status", "approver2_email",
    "approver2_name", "remarks", "completed_at",
)

_NATIVE_UPSERT = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def normalize_identity(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def requester_key(req: AccessRequest) -> str:
    """Vendor name for vendor-sourced requests, the person's name otherwise."""
    return normalize_identity(req.vendor_name if req.is_vendor_sourced else req.name)


def hash_credential(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def default_closure_key(req: AccessRequest, task: RequestTask) -> Tuple[str, str]:
    return req.ritm_number or f"REQ{req.id}", task.task_number or f"TSK{task.id}"


def closure_key(req: AccessRequest, task: RequestTask) -> Tuple[str, str]:
    """Key the task's closure details are filed under: its bound key if any, else RITM + TASK."""
    ritm, task_number = default_closure_key(req, task)
    return task.closure_ritm_number or ritm, task.closure_task_number or task_number


def bind_closure_key(
    db: Session,
    req: AccessRequest,
    task: RequestTask,
    ritm_number: Optional[str] = None,
    task_number: Optional[str] = None,
) -> Tuple[str, str]:
    """
    Point the task's closure at (ritm_number, task_number), keeping the current
    part of the key for whichever is omitted, and return the effective key.
    A key another task already files its closure under is refused.
    """
    current = closure_key(req, task)
    key = (ritm_number or current[0], task_number or current[1])
    if key == current:
        return key

    bound_elsewhere = db.execute(
        select(RequestTask.id).where(
            RequestTask.id != task.id,
            RequestTask.closure_ritm_number == key[0],
            RequestTask.closure_task_number == key[1],
        )
    ).first()
    numbered_elsewhere = db.execute(
        select(RequestTask.id)
        .join(AccessRequest, AccessRequest.id == RequestTask.user_request_id)
        .where(
            RequestTask.id != task.id,
            AccessRequest.ritm_number == key[0],
            RequestTask.task_number == key[1],
        )
    ).first()
    if bound_elsewhere or numbered_elsewhere:
        raise ValidationError(
            f"Closure key {key[0]}/{key[1]} already belongs to another task",
            ritm_number=key[0], task_number=key[1],
        )

    default = default_closure_key(req, task)
    task.closure_ritm_number, task.closure_task_number = (None, None) if key == default else key
    logger.info("task %s closure key %s/%s -> %s/%s", task.id, current[0], current[1], key[0], key[1])
    return key


def project_task(req: AccessRequest, task: RequestTask) -> Dict[str, Any]:
    """Access log row for the current disposition of a task."""
    ritm, task_number = default_closure_key(req, task)
    return {
        "ritm_number": ritm,
        "task_number": task_number,
        "plant_id": task.plant_id,
        "department_id": task.department_id,
        "application_id": task.application_id,
        "role_id": task.role_id,
        "requester_key": requester_key(req),
        "request_for_by": req.request_for_by,
        "name": req.name,
        "vendor_name": req.vendor_name,
        "access_request_type": req.access_request_type,
        "task_status": task.task_status,
        "request_status": req.status,
        "approver1_status": req.approver1_status,
        "approver1_email": req.approver1_email,
        "approver1_name": req.approver1_name,
        "approver2_status": req.approver2_status,
        "approver2_email": req.approver2_email,
        "approver2_name": req.approver2_name,
        "remarks": task.remarks,
        "completed_at": req.completed_at,
    }


def _check_fields(fields: Mapping[str, Any], allowed: Iterable[str]) -> None:
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(unknown)}", fields=unknown)


def _upsert(db: Session, model, key: Dict[str, Any], values: Dict[str, Any], overwrite: Iterable[str]) -> None:
    """
    INSERT ... ON CONFLICT (key) DO UPDATE for the columns in `overwrite`.
    Columns left out of `overwrite` keep their stored value on conflict.
    """
    overwrite = list(overwrite)
    insert = _NATIVE_UPSERT.get(db.get_bind().dialect.name)
    if insert is None:
        # no native upsert; the unique constraint still rejects a duplicate insert
        existing = db.execute(select(model).filter_by(**key)).scalar_one_or_none()
        if existing is None:
            db.add(model(**key, **values))
        else:
            for col in overwrite:
                setattr(existing, col, values[col])
        db.flush()
        return

    stmt = insert(model).values(**key, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(key),
        set_={col: stmt.excluded[col] for col in overwrite},
    )
    db.execute(stmt)


def upsert_closure(db: Session, ritm_number: str, task_number: str, fields: Mapping[str, Any]) -> ClosureRecord:
    """
    Insert or overwrite the closure row for (ritm_number, task_number).
    Every mutable field is replaced (missing ones become NULL). A plaintext
    ``password`` is bcrypt-hashed; when none is given the stored hash is kept.
    """
    if not ritm_number or not task_number:
        raise ValidationError("Closure needs both a RITM number and a TASK number")
    _check_fields(fields, CLOSURE_FIELDS + ("password",))

    values: Dict[str, Any] = {col: fields.get(col) for col in CLOSURE_FIELDS}
    values["updated_on"] = datetime.utcnow()
    overwrite = list(CLOSURE_FIELDS) + ["updated_on"]

    plain = fields.get("password")
    if plain:
        values["password_hash"] = hash_credential(plain)
        overwrite.append("password_hash")

    _upsert(db, ClosureRecord, {"ritm_number": ritm_number, "task_number": task_number}, values, overwrite)
    row = db.execute(
        select(ClosureRecord)
        .where(ClosureRecord.ritm_number == ritm_number, ClosureRecord.task_number == task_number)
        .execution_options(populate_existing=True)
    ).scalar_one()
    logger.info("closure upserted for %s/%s", ritm_number, task_number)
    return row


def upsert_access_log(db: Session, request_id: int, task_id: int, fields: Mapping[str, Any]) -> AccessLogEntry:
    """Insert or overwrite the access log row for (request_id, task_id)."""
    _check_fields(fields, ACCESS_LOG_FIELDS)
    values: Dict[str, Any] = {col: fields.get(col) for col in ACCESS_LOG_FIELDS}
    values["updated_on"] = datetime.utcnow()

    _upsert(
        db, AccessLogEntry, {"request_id": request_id, "task_id": task_id},
        values, list(ACCESS_LOG_FIELDS) + ["updated_on"],
    )
    return db.execute(
        select(AccessLogEntry)
        .where(AccessLogEntry.request_id == request_id, AccessLogEntry.task_id == task_id)
        .execution_options(populate_existing=True)
    ).scalar_one()


def sync_task(db: Session, req: AccessRequest, task: RequestTask) -> AccessLogEntry:
    """Mirror the current disposition of one task into the access log."""
    return upsert_access_log(db, req.id, task.id, project_task(req, task))
