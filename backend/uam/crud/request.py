# uam/crud/request.py
from typing import Dict, List, Optional, Tuple
from datetime import datetime
import logging

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from uam.core.database import unit_of_work
from uam.core.errors import NotFoundError, ValidationError
from uam.metrics import requests_created_total
from uam.models.access_request import AccessRequest, RequestTask, RequestStatus, ApprovalStatus, TaskStatus
from uam.models.closure import ClosureRecord
from uam.schemas import AccessRequestCreate, ActingUser
from uam.services.admission import admit_request
from uam.services.audit import record_audit
from uam.services.closure import closure_key, sync_task
from uam.services.notify import send_email
from uam.services.workflow import ApproverResolution, Contact, resolve, resolve_contacts
from uam.utils.email_template import approval_needed_email

logger = logging.getLogger(__name__)


def ritm_number_for(request_id: int) -> str:
    return f"RITM{request_id:07d}"

def task_number_for(task_id: int) -> str:
    return f"TASK{task_id:07d}"


def _resolve_plants(db: Session, payload: AccessRequestCreate) -> Tuple[Dict[int, ApproverResolution], Dict[int, Contact]]:
    resolutions: Dict[int, ApproverResolution] = {}
    for t in payload.tasks:
        if t.plant_id not in resolutions:
            resolutions[t.plant_id] = resolve(db, t.plant_id)

    approver1_ids = {r.approver1 for r in resolutions.values()}
    if len(approver1_ids) > 1:
        raise ValidationError(
            "Tasks span plants with different first approvers; submit one request per plant",
            plants=sorted(resolutions),
        )

    ids = set(approver1_ids)
    for r in resolutions.values():
        ids |= r.approver2_pool
    return resolutions, resolve_contacts(db, ids)


def create_request(db: Session, payload: AccessRequestCreate, user: ActingUser) -> AccessRequest:
    """Admit, stamp approvers, persist Pending request + tasks, then notify approver1."""
    with unit_of_work(db):
        admit_request(db, payload)
        resolutions, contacts = _resolve_plants(db, payload)

        first = resolutions[payload.tasks[0].plant_id]
        approver1 = contacts.get(first.approver1)
        if approver1 is None or not approver1.email:
            raise ValidationError(f"Approver 1 (user {first.approver1}) has no email on record")

        now = datetime.utcnow()
        req = AccessRequest(
            request_for_by=payload.request_for_by,
            name=payload.name,
            employee_code=payload.employee_code,
            employee_location=payload.employee_location,
            requester_email=payload.requester_email,
            access_request_type=payload.access_request_type,
            training_status=payload.training_status,
            vendor_name=payload.vendor_name,
            vendor_firm=payload.vendor_firm,
            vendor_code=payload.vendor_code,
            vendor_allocated_id=payload.vendor_allocated_id,
            remarks=payload.remarks,
            status=RequestStatus.PENDING.value,
            approver1_email=approver1.email,
            approver1_name=approver1.name,
            approver1_status=ApprovalStatus.PENDING.value,
            approver2_status=ApprovalStatus.PENDING.value,
            created_by=user.email,
            created_on=now,
            updated_on=now,
        )
        db.add(req)
        db.flush()
        req.ritm_number = ritm_number_for(req.id)

        tasks: List[RequestTask] = []
        for t in payload.tasks:
            res = resolutions[t.plant_id]
            pool_emails = [contacts[i].email for i in sorted(res.approver2_pool) if i in contacts and contacts[i].email]
            task = RequestTask(
                user_request_id=req.id,
                application_id=t.application_id,
                department_id=t.department_id,
                role_id=t.role_id,
                plant_id=t.plant_id,
                reports_to=t.reports_to,
                remarks=t.remarks,
                task_status=TaskStatus.PENDING.value,
                approver1_name=approver1.name,
                approver1_email=approver1.email,
                approver2_pool_emails=", ".join(pool_emails) or None,
                created_on=now,
                updated_on=now,
            )
            db.add(task)
            tasks.append(task)
        db.flush()
        for task in tasks:
            task.task_number = task_number_for(task.id)
        db.flush()
        db.refresh(req)
        for task in tasks:
            sync_task(db, req, task)

    logger.info("request %s created by %s with %d task(s)", req.ritm_number, user.email, len(tasks))
    requests_created_total.labels(access_type=req.access_request_type).inc()

    record_audit(
        db, "REQUEST_CREATED", user.email, "user_request", "user_requests", req.id,
        new_value={"ritm_number": req.ritm_number, "access_request_type": req.access_request_type,
                   "approver1_email": req.approver1_email, "tasks": [t.task_number for t in req.tasks]},
    )
    subject, html = approval_needed_email(req, req.tasks, req.approver1_name, "Approver 1")
    send_email([req.approver1_email], subject, html)
    return req


def get_request(db: Session, request_id: int) -> AccessRequest:
    req = db.get(AccessRequest, request_id)
    if not req:
        raise NotFoundError("Access request", request_id)
    return req


def closure_for(db: Session, req: AccessRequest, task: RequestTask) -> Optional[ClosureRecord]:
    ritm, task_number = closure_key(req, task)
    return db.execute(
        select(ClosureRecord).where(ClosureRecord.ritm_number == ritm, ClosureRecord.task_number == task_number)
    ).scalar_one_or_none()


def list_requests(
    db: Session,
    status: Optional[str] = None,
    access_request_type: Optional[str] = None,
    plant_id: Optional[int] = None,
    requester: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[AccessRequest]:
    """Newest first. `requester` matches the person or vendor name, case-insensitively."""
    stmt = select(AccessRequest)
    if status:
        stmt = stmt.where(AccessRequest.status == status)
    if access_request_type:
        stmt = stmt.where(AccessRequest.access_request_type == access_request_type)
    if plant_id is not None:
        stmt = stmt.where(AccessRequest.tasks.any(RequestTask.plant_id == plant_id))
    if requester and requester.strip():
        needle = f"%{requester.strip().lower()}%"
        stmt = stmt.where(or_(
            func.lower(AccessRequest.name).like(needle),
            func.lower(AccessRequest.vendor_name).like(needle),
        ))
    stmt = stmt.order_by(AccessRequest.created_on.desc(), AccessRequest.id.desc()).limit(limit).offset(offset)
    return list(db.execute(stmt).scalars())
