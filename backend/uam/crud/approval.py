# uam/crud/approval.py
"""
Two-level approval of access requests.

Approver 1 is a single identity stamped on the request at creation.
Approver 2 is a pool resolved from the plant workflow; the first pool member
to decide wins. Each level's slot is claimed with a conditional UPDATE so a
concurrent second decision sees rowcount 0 instead of overwriting the first.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from uam.core.database import unit_of_work
from uam.core.errors import AlreadyDecidedError, AuthorizationError, NotFoundError, ValidationError
from uam.metrics import decision_races_lost_total, decisions_total
from uam.models.access_request import AccessRequest, ApprovalStatus, RequestStatus, TaskStatus
from uam.schemas import ActingUser
from uam.services.audit import record_audit
from uam.services.closure import sync_task
from uam.services.notify import send_email
from uam.services.workflow import approver2_pool_for_plants
from uam.utils.email_template import approval_needed_email, decision_email

logger = logging.getLogger(__name__)

LEVEL_1 = "approver1"
LEVEL_2 = "approver2"


def _load(db: Session, request_id: int) -> AccessRequest:
    req = db.get(AccessRequest, request_id)
    if not req:
        raise NotFoundError("Access request", request_id)
    return req


def _same_email(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.strip().lower() == b.strip().lower()


def _in_pool(db: Session, req: AccessRequest, user: ActingUser) -> bool:
    if _same_email(user.email, req.approver2_email):
        return True
    try:
        pool = approver2_pool_for_plants(db, {t.plant_id for t in req.tasks})
    except NotFoundError as e:
        logger.warning("approver2 pool for request %s unavailable: %s", req.ritm_number, e)
        raise AuthorizationError(
            f"No active approval workflow covers request {req.ritm_number}; approver 2 cannot act",
        ) from e
    return user.id in pool


def resolve_actor(db: Session, req: AccessRequest, user: ActingUser) -> str:
    """Which approval level `user` may decide on `req`, or raise.

    The approver1 identity only ever acts at level 1, even when the plant
    workflow also lists it in the approver2 pool.
    """
    if _same_email(user.email, req.approver1_email):
        if req.status != RequestStatus.PENDING:
            raise AlreadyDecidedError(f"Request {req.ritm_number} is already {req.status}", status=req.status)
        if req.approver1_status != ApprovalStatus.PENDING:
            raise AlreadyDecidedError(
                f"Approver 1 already {req.approver1_status.lower()} request {req.ritm_number}",
                approver1_status=req.approver1_status,
            )
        return LEVEL_1

    if not _in_pool(db, req, user):
        raise AuthorizationError(f"{user.email} is not an approver for request {req.ritm_number}")
    if req.status != RequestStatus.PENDING:
        raise AlreadyDecidedError(f"Request {req.ritm_number} is already {req.status}", status=req.status)
    if req.approver1_status != ApprovalStatus.APPROVED:
        raise AuthorizationError(f"Approver 2 cannot act on {req.ritm_number} before approver 1 has approved")
    if req.approver2_status != ApprovalStatus.PENDING:
        raise AlreadyDecidedError(
            f"Approver 2 slot of {req.ritm_number} was already decided by {req.approver2_email}",
            approver2_email=req.approver2_email,
        )
    return LEVEL_2


def _claim(db: Session, req: AccessRequest, level: str, values: Dict[str, Any]) -> None:
    """Conditionally write the level's decision; lose the race → AlreadyDecidedError."""
    conditions = [
        AccessRequest.id == req.id,
        AccessRequest.status == RequestStatus.PENDING.value,
    ]
    if level == LEVEL_1:
        conditions.append(AccessRequest.approver1_status == ApprovalStatus.PENDING.value)
    else:
        conditions += [
            AccessRequest.approver1_status == ApprovalStatus.APPROVED.value,
            AccessRequest.approver2_status == ApprovalStatus.PENDING.value,
        ]
    result = db.execute(
        update(AccessRequest).where(*conditions).values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        decision_races_lost_total.inc()
        raise AlreadyDecidedError(f"Request {req.ritm_number} was decided concurrently; refresh and retry")
    db.refresh(req)


def cascade_completion(req: AccessRequest, now: datetime) -> bool:
    """Complete the request once every task is closed. True if it changed."""
    if req.status == RequestStatus.COMPLETED or not req.tasks:
        return False
    if all(t.is_closed for t in req.tasks):
        req.status = RequestStatus.COMPLETED.value
        req.completed_at = now
        req.updated_on = now
        logger.info("request %s completed: all %d task(s) closed", req.ritm_number, len(req.tasks))
        return True
    return False


def _decide(db: Session, request_id: int, user: ActingUser, decision: str, comments: Optional[str]) -> AccessRequest:
    approved = decision == ApprovalStatus.APPROVED.value
    with unit_of_work(db):
        req = _load(db, request_id)
        level = resolve_actor(db, req, user)
        before = {"status": req.status, "approver1_status": req.approver1_status, "approver2_status": req.approver2_status}
        task_before = {t.id: t.task_status for t in req.tasks}

        now = datetime.utcnow()
        n = "1" if level == LEVEL_1 else "2"
        values: Dict[str, Any] = {
            f"approver{n}_status": decision,
            f"approver{n}_name": user.display_name,
            f"approver{n}_action_at": now,
            "updated_on": now,
        }
        if level == LEVEL_2:
            values["approver2_email"] = user.email
        if not approved:
            values["status"] = RequestStatus.REJECTED.value
        _claim(db, req, level, values)

        for t in req.tasks:
            setattr(t, f"approver{n}_action", decision)
            setattr(t, f"approver{n}_action_at", now)
            setattr(t, f"approver{n}_name", user.display_name)
            setattr(t, f"approver{n}_comments", comments)
            if level == LEVEL_2:
                t.approver2_email = user.email
            if not approved:
                t.task_status = TaskStatus.REJECTED.value
            elif level == LEVEL_2:
                t.task_status = TaskStatus.APPROVED.value
            t.updated_on = now

        db.flush()
        for t in req.tasks:
            sync_task(db, req, t)

    decisions_total.labels(level=level, decision=decision.lower()).inc()
    logger.info("%s %s request %s (%s)", user.email, decision.lower(), req.ritm_number, level)
    _after_decision(db, req, user, level, decision, comments, before, task_before)
    return req


def _after_decision(db: Session, req: AccessRequest, user: ActingUser, level: str, decision: str,
                    comments: Optional[str], before: Dict[str, Any], task_before: Dict[int, str]) -> None:
    """Audit + notifications; both best-effort and outside the transaction."""
    tag = "L1" if level == LEVEL_1 else "L2"
    action = f"{'APPROVE' if decision == ApprovalStatus.APPROVED.value else 'REJECT'}_{tag}"
    record_audit(
        db, action, user.email, "user_request", "user_requests", req.id,
        old_value=before,
        new_value={"status": req.status, "approver1_status": req.approver1_status, "approver2_status": req.approver2_status},
        comment=comments,
    )
    for t in req.tasks:
        record_audit(
            db, action, user.email, "task", "task_requests", t.id,
            old_value={"task_status": task_before.get(t.id)},
            new_value={"task_status": t.task_status, f"approver{tag[-1]}_action": decision},
            comment=comments,
        )

    if level == LEVEL_1 and decision == ApprovalStatus.APPROVED.value:
        pool: List[str] = []
        for t in req.tasks:
            pool += [e.strip() for e in (t.approver2_pool_emails or "").split(",") if e.strip()]
        subject, html = approval_needed_email(req, req.tasks, None, "Approver 2")
        send_email(pool, subject, html)
    else:
        subject, html = decision_email(req, req.tasks, user.display_name, decision, comments)
        send_email([req.requester_email, req.approver1_email, req.approver2_email], subject, html)


def approve(db: Session, request_id: int, user: ActingUser, comments: Optional[str] = None) -> AccessRequest:
    return _decide(db, request_id, user, ApprovalStatus.APPROVED.value, comments)


def reject(db: Session, request_id: int, user: ActingUser, comments: Optional[str]) -> AccessRequest:
    """Reject at whichever level `user` holds. Comments are mandatory."""
    if not (comments or "").strip():
        raise ValidationError("A comment is required to reject a request")
    return _decide(db, request_id, user, ApprovalStatus.REJECTED.value, comments.strip())
