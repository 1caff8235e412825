"""Per-plant approver resolution.

The workflow master stores each approver slot as a string holding one user id
or a comma separated pool ("1827,1426"). Those strings are parsed here and
nowhere else.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from uam.core.errors import NotFoundError, ValidationError
from uam.models.reference import User
from uam.models.workflow import ApprovalWorkflow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApproverResolution:
    plant_id: int
    workflow_id: int
    approver1: int
    approver2_pool: FrozenSet[int]


@dataclass(frozen=True)
class Contact:
    id: int
    email: Optional[str]
    name: str


def parse_approver_ids(raw: Optional[str]) -> List[int]:
    """Split a slot string into user ids, keeping order and dropping junk."""
    ids: List[int] = []
    for part in str(raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        try:
            uid = int(part)
        except ValueError:
            logger.warning("ignoring non-numeric approver id %r in slot %r", part, raw)
            continue
        if uid not in ids:
            ids.append(uid)
    return ids


def resolve(db: Session, plant_id: int) -> ApproverResolution:
    """Approver1 and the approver2 pool from the active workflow of a plant."""
    rows = db.execute(
        select(ApprovalWorkflow)
        .where(ApprovalWorkflow.plant_id == plant_id, ApprovalWorkflow.is_active.is_(True))
        .order_by(ApprovalWorkflow.id.asc())
    ).scalars().all()
    if not rows:
        raise NotFoundError("Active approval workflow for plant", plant_id)
    if len(rows) > 1:
        logger.warning(
            "plant %s has %d active workflows %s; using the oldest (id=%s)",
            plant_id, len(rows), [r.id for r in rows], rows[0].id,
        )
    wf = rows[0]

    first = parse_approver_ids(wf.approver_1_id)
    if not first:
        raise ValidationError(f"Workflow {wf.id} for plant {plant_id} has no approver 1", workflow_id=wf.id)
    if len(first) > 1:
        logger.warning("workflow %s lists %d approver1 ids; using %s", wf.id, len(first), first[0])

    return ApproverResolution(
        plant_id=plant_id,
        workflow_id=wf.id,
        approver1=first[0],
        approver2_pool=frozenset(parse_approver_ids(wf.approver_2_id)),
    )


def resolve_contacts(db: Session, user_ids: Iterable[int]) -> Dict[int, Contact]:
    """Emails and names for approver ids; unknown ids are simply absent."""
    ids = sorted(set(user_ids))
    if not ids:
        return {}
    users = db.execute(select(User).where(User.id.in_(ids))).scalars().all()
    return {u.id: Contact(id=u.id, email=u.email, name=u.employee_name) for u in users}


def approver2_pool_for_plants(db: Session, plant_ids: Iterable[int]) -> FrozenSet[int]:
    """Union of the approver2 pools across the given plants."""
    pool: set[int] = set()
    for plant_id in sorted(set(plant_ids)):
        pool |= resolve(db, plant_id).approver2_pool
    return frozenset(pool)
