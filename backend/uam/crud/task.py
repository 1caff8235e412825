# uam/crud/task.py
from typing import Any, Dict, List, Optional, Tuple
from datetime import datetime
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from uam.core.database import unit_of_work
from uam.core.errors import AuthorizationError, NotFoundError, ValidationError
from uam.crud.approval import cascade_completion
from uam.metrics import task_dispositions_total
from uam.models.access_request import (
    CLOSED_TASK_STATUSES, AccessRequest, ApprovalStatus, RequestStatus, RequestTask, TaskStatus,
)
from uam.models.closure import ClosureRecord
from uam.models.reference import Plant
from uam.schemas import ActingUser, ClosureDataIn
from uam.services.audit import record_audit
from uam.services.closure import bind_closure_key, sync_task, upsert_closure

logger = logging.getLogger(__name__)


def _closure_fields(task: RequestTask, new_status: str, data: ClosureDataIn) -> Dict[str, Any]:
    req = task.request
    fields = data.model_dump(exclude={"ritm_number", "task_number"})
    defaults = {
        "request_by": req.request_for_by,
        "employee_code": req.employee_code,
        "name": req.vendor_name if req.is_vendor_sourced else req.name,
        "access_request_type": req.access_request_type,
        "request_status": req.status,
        "remarks": task.remarks,
        "status": new_status,
    }
    for k, v in defaults.items():
        if fields.get(k) is None:
            fields[k] = v
    return fields


def _check_transition(task: RequestTask, req: AccessRequest, status: str) -> None:
    old = task.task_status
    if old == TaskStatus.REJECTED and status != old:
        raise ValidationError(f"Task {task.task_number} was rejected and cannot move to {status}",
                              task_status=old)
    if old in CLOSED_TASK_STATUSES and status not in CLOSED_TASK_STATUSES:
        raise ValidationError(f"Task {task.task_number} is already {old.lower()} and cannot be reopened",
                              task_status=old)
    if status not in CLOSED_TASK_STATUSES and req.status != RequestStatus.PENDING:
        raise ValidationError(f"Request {req.ritm_number} is {req.status.lower()}; its tasks can only be closed",
                              request_status=req.status)
    if status in CLOSED_TASK_STATUSES and not (
        req.approver1_status == ApprovalStatus.APPROVED and req.approver2_status == ApprovalStatus.APPROVED
    ):
        raise AuthorizationError(
            f"Task {task.task_number} cannot be {status.lower()} before both approvers have approved",
            approver1_status=req.approver1_status,
            approver2_status=req.approver2_status,
        )


def update_task(
    db: Session,
    task_id: int,
    new_status: TaskStatus,
    task_data: Optional[ClosureDataIn] = None,
    user: Optional[ActingUser] = None,
) -> Tuple[RequestTask, ClosureRecord]:
    """
    Move a task to `new_status` and record its closure details.
    Closing (Closed/Completed) needs both approvals on the parent request.
    Closed, Completed and Rejected tasks never reopen, and once the request
    has left Pending only closing updates are accepted.
    A caller acting as `user` must cover the task's plant.
    The task row, closure row, access log and parent cascade commit together.
    """
    data = task_data or ClosureDataIn()
    status = TaskStatus(new_status).value
    actor = user.email if user else "system"

    with unit_of_work(db):
        task = db.get(RequestTask, task_id)
        if not task:
            raise NotFoundError("Task", task_id)
        if user is not None and not user.covers_plant(task.plant_id):
            raise AuthorizationError(f"Plant {task.plant_id} is outside your support scope", plant_id=task.plant_id)
        req = task.request
        _check_transition(task, req, status)

        old_status = task.task_status
        now = datetime.utcnow()
        task.task_status = status
        if data.remarks is not None:
            task.remarks = data.remarks
        task.updated_on = now
        ritm, task_number = bind_closure_key(db, req, task, data.ritm_number, data.task_number)
        db.flush()

        closure = upsert_closure(db, ritm, task_number, _closure_fields(task, status, data))
        sync_task(db, req, task)

        if cascade_completion(req, now):
            db.flush()
            for t in req.tasks:
                sync_task(db, req, t)

    task_dispositions_total.labels(status=status).inc()
    logger.info("task %s: %s -> %s by %s", task.task_number, old_status, status, actor)
    record_audit(
        db, "TASK_UPDATED", actor, "task", "task_requests", task.id,
        old_value={"task_status": old_status},
        new_value={"task_status": status, "request_status": req.status,
                   "closure": {"ritm_number": closure.ritm_number, "task_number": closure.task_number}},
    )
    return task, closure


def list_tasks(
    db: Session,
    user: Optional[ActingUser] = None,
    plant: Optional[str] = None,
    plant_id: Optional[int] = None,
    ritm_number: Optional[str] = None,
    task_status: Optional[str] = None,
    access_request_type: Optional[str] = None,
) -> List[RequestTask]:
    """Task queue, newest first, limited to the plants `user` supports."""
    stmt = select(RequestTask).join(AccessRequest, AccessRequest.id == RequestTask.user_request_id)
    if plant:
        stmt = stmt.join(Plant, Plant.id == RequestTask.plant_id).where(Plant.plant_name == plant)
    if plant_id is not None:
        stmt = stmt.where(RequestTask.plant_id == plant_id)
    if ritm_number:
        stmt = stmt.where(AccessRequest.ritm_number == ritm_number)
    if task_status:
        stmt = stmt.where(RequestTask.task_status == task_status)
    if access_request_type:
        stmt = stmt.where(AccessRequest.access_request_type == access_request_type)
    if user is not None and not user.sees_all_plants:
        stmt = stmt.where(RequestTask.plant_id.in_(list(user.plant_scope)))
    return list(db.execute(stmt.order_by(RequestTask.id.desc())).scalars())


def plant_names(db: Session, plant_ids) -> Dict[int, str]:
    ids = set(plant_ids)
    if not ids:
        return {}
    return dict(db.execute(select(Plant.id, Plant.plant_name).where(Plant.id.in_(ids))).all())
