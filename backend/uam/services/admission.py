"""
uam.services.admission -- pre-admission conflict rules.

Rules:
    RULE_1 -- same requester already has an in-flight task for the
              plant/department/application.
    RULE_2 -- "Modify Access" needs a previously closed (granted) entry.
    RULE_3 -- "New User Creation" / "Bulk New User Creation" must not
              duplicate a closed grant.
    RULE_4 -- no request while an access log entry is still active.
    RULE_6 -- bulk creation covers 1..7 applications of the requested
              department.

All checks read committed state without locks. Two concurrent submissions
for the same tuple can both pass; the later one is caught by the next
submission, not by this one.
"""
from __future__ import annotations
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
import logging

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from uam.core.errors import ConflictError, ValidationError
from uam.metrics import admission_conflicts_total
from uam.models.access_log import AccessLogEntry
from uam.models.access_request import (
    ACTIVE_TASK_STATUSES,
    BULK_ACCESS_TYPES,
    BULK_NEW_USER_CREATION,
    CLOSED_TASK_STATUSES,
    MODIFY_ACCESS,
    NEW_USER_CREATION,
    VENDOR_SOURCE,
    AccessRequest,
    RequestTask,
)
from uam.models.reference import Application
from uam.schemas import AccessRequestCreate
from uam.services.closure import normalize_identity

logger = logging.getLogger(__name__)

MAX_BULK_APPLICATIONS = 7

RULE_IN_FLIGHT = "RULE_1"
RULE_MODIFY_NEEDS_GRANT = "RULE_2"
RULE_DUPLICATE_GRANT = "RULE_3"
RULE_ACTIVE_ENTRY = "RULE_4"
RULE_BULK = "RULE_6"


@dataclass
class InFlightResult:
    conflict: bool
    reason: Optional[str] = None
    rule: Optional[str] = None
    ritm_numbers: List[str] = field(default_factory=list)
    task_numbers: List[str] = field(default_factory=list)


@dataclass
class AccessLogResult:
    conflict: bool
    rule: Optional[str] = None
    reason: Optional[str] = None
    counts: Dict[str, int] = field(default_factory=lambda: {"closed": 0, "active": 0})


@dataclass
class BulkResult:
    valid: bool
    rule: Optional[str] = None
    reason: Optional[str] = None


def _requester_expr():
    return func.lower(func.trim(case(
        (AccessRequest.request_for_by == VENDOR_SOURCE, AccessRequest.vendor_name),
        else_=AccessRequest.name,
    )))


def check_in_flight(
    db: Session,
    plant_id: int,
    department_id: int,
    application_ids: Sequence[int],
    requester: str,
    access_type: Optional[str] = None,
) -> InFlightResult:
    """RULE_1: an open task already covers this requester and application."""
    if not application_ids:
        return InFlightResult(conflict=False)

    rows = db.execute(
        select(AccessRequest.ritm_number, RequestTask.task_number, RequestTask.application_id)
        .select_from(RequestTask)
        .join(AccessRequest, RequestTask.user_request_id == AccessRequest.id)
        .where(
            RequestTask.plant_id == plant_id,
            RequestTask.department_id == department_id,
            RequestTask.application_id.in_(list(application_ids)),
            RequestTask.task_status.in_(ACTIVE_TASK_STATUSES),
            _requester_expr() == normalize_identity(requester),
        )
        .order_by(RequestTask.id)
    ).all()
    if not rows:
        return InFlightResult(conflict=False)

    ritms = sorted({r.ritm_number for r in rows if r.ritm_number})
    tasks = [r.task_number for r in rows if r.task_number]
    apps = sorted({r.application_id for r in rows})
    reason = (
        f"{requester!r} already has an open request for application(s) {apps} "
        f"in plant {plant_id}, department {department_id}"
    )
    if ritms:
        reason += f" ({', '.join(ritms)})"
    logger.info("in-flight conflict: %s [access_type=%s]", reason, access_type)
    return InFlightResult(conflict=True, reason=reason, rule=RULE_IN_FLIGHT, ritm_numbers=ritms, task_numbers=tasks)


def _access_log_counts(
    db: Session, plant_id: int, department_id: int, application_ids: Sequence[int], requester: str,
) -> Dict[str, int]:
    statuses = db.execute(
        select(AccessLogEntry.task_status).where(
            AccessLogEntry.plant_id == plant_id,
            AccessLogEntry.department_id == department_id,
            AccessLogEntry.application_id.in_(list(application_ids)),
            AccessLogEntry.requester_key == normalize_identity(requester),
        )
    ).scalars().all()
    return {
        "closed": sum(1 for s in statuses if s in CLOSED_TASK_STATUSES),
        "active": sum(1 for s in statuses if s in ACTIVE_TASK_STATUSES),
    }


def check_access_log_conflict(
    db: Session,
    plant_id: int,
    department_id: int,
    application_ids: Sequence[int],
    requester: str,
    access_type: str,
) -> AccessLogResult:
    """RULE_2 / RULE_3 / RULE_4 against previously recorded dispositions."""
    counts = _access_log_counts(db, plant_id, department_id, application_ids, requester) if application_ids \
        else {"closed": 0, "active": 0}
    active_msg = f"an access request for {requester!r} is still active for these applications"

    if access_type == MODIFY_ACCESS:
        if counts["closed"] == 0:
            return AccessLogResult(
                True, RULE_MODIFY_NEEDS_GRANT,
                f"{requester!r} has no granted access to modify for these applications", counts,
            )
        if counts["active"]:
            return AccessLogResult(True, RULE_ACTIVE_ENTRY, active_msg, counts)
        return AccessLogResult(False, counts=counts)

    if access_type in (NEW_USER_CREATION, BULK_NEW_USER_CREATION):
        if counts["closed"]:
            return AccessLogResult(
                True, RULE_DUPLICATE_GRANT,
                f"{requester!r} already holds access for these applications", counts,
            )
        if counts["active"]:
            return AccessLogResult(True, RULE_ACTIVE_ENTRY, active_msg, counts)
        return AccessLogResult(False, counts=counts)

    if counts["active"]:
        return AccessLogResult(True, RULE_ACTIVE_ENTRY, active_msg, counts)
    return AccessLogResult(False, counts=counts)


def validate_bulk_creation(
    db: Session, plant_id: int, department_id: int, application_ids: Sequence[int],
) -> BulkResult:
    """RULE_6: 1..7 applications, all owned by the requested department."""
    if not application_ids:
        return BulkResult(False, RULE_BULK, "at least one application is required")
    if len(application_ids) > MAX_BULK_APPLICATIONS:
        return BulkResult(
            False, RULE_BULK,
            f"bulk requests are limited to {MAX_BULK_APPLICATIONS} applications (got {len(application_ids)})",
        )

    apps = {
        a.id: a for a in db.execute(
            select(Application).where(Application.id.in_(list(application_ids)))
        ).scalars().all()
    }
    missing = sorted(set(application_ids) - set(apps))
    if missing:
        return BulkResult(False, RULE_BULK, f"unknown application(s) {missing}")
    foreign = sorted(a.id for a in apps.values() if a.department_id != department_id)
    if foreign:
        return BulkResult(
            False, RULE_BULK,
            f"application(s) {foreign} do not belong to department {department_id}",
        )
    return BulkResult(True)


def _groups(payload: AccessRequestCreate) -> "OrderedDict[Tuple[int, int], List[int]]":
    groups: "OrderedDict[Tuple[int, int], List[int]]" = OrderedDict()
    for t in payload.tasks:
        apps = groups.setdefault((t.plant_id, t.department_id), [])
        if t.application_id not in apps:
            apps.append(t.application_id)
    return groups


def admit_request(db: Session, payload: AccessRequestCreate) -> None:
    """
    Run every admission rule for a prospective request; raise on the first
    failure. Bulk limits are bad input (ValidationError); everything else is
    a ConflictError carrying the rule id.
    """
    requester = payload.requester_identity
    access_type = payload.access_request_type

    for (plant_id, department_id), app_ids in _groups(payload).items():
        if access_type in BULK_ACCESS_TYPES:
            bulk = validate_bulk_creation(db, plant_id, department_id, app_ids)
            if not bulk.valid:
                admission_conflicts_total.labels(rule=bulk.rule).inc()
                raise ValidationError(bulk.reason, rule=bulk.rule, plant_id=plant_id, department_id=department_id)

        inflight = check_in_flight(db, plant_id, department_id, app_ids, requester, access_type)
        if inflight.conflict:
            admission_conflicts_total.labels(rule=inflight.rule).inc()
            raise ConflictError(inflight.rule, inflight.reason, ritm_numbers=inflight.ritm_numbers)

        logged = check_access_log_conflict(db, plant_id, department_id, app_ids, requester, access_type)
        if logged.conflict:
            admission_conflicts_total.labels(rule=logged.rule).inc()
            raise ConflictError(logged.rule, logged.reason, counts=logged.counts)
