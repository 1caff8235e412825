from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from uam.core.database import get_db
from uam.crud.approval import approve, reject
from uam.crud.request import closure_for, create_request, get_request, list_requests
from uam.deps.auth import get_current_user
from uam.models.access_request import AccessRequest
from uam.models.closure import ClosureRecord
from uam.schemas import AccessRequestCreate, AccessRequestOut, ActingUser, DecisionIn
from uam.services.closure import CLOSURE_FIELDS

router = APIRouter(prefix="/api/user-requests", tags=["requests"])

def closure_out(row: Optional[ClosureRecord]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    out = {"ritm_number": row.ritm_number, "task_number": row.task_number}
    out.update({col: getattr(row, col) for col in CLOSURE_FIELDS})
    out["has_credential"] = bool(row.password_hash)
    out["updated_on"] = row.updated_on
    return out

def request_out(db: Session, req: AccessRequest) -> AccessRequestOut:
    out = AccessRequestOut.model_validate(req)
    for task_out, task in zip(out.tasks, req.tasks):
        task_out.closure = closure_out(closure_for(db, req, task))
    return out

@router.post("", response_model=AccessRequestOut, status_code=201)
def api_create_request(body: AccessRequestCreate, db: Session = Depends(get_db),
                       user: ActingUser = Depends(get_current_user)):
    return request_out(db, create_request(db, body, user))

@router.get("", response_model=List[AccessRequestOut])
def api_list_requests(status: Optional[str] = None, access_request_type: Optional[str] = None,
                      plant_id: Optional[int] = None, requester: Optional[str] = None,
                      skip: int = 0, limit: int = 100, db: Session = Depends(get_db),
                      user=Depends(get_current_user)):
    rows = list_requests(db, status=status, access_request_type=access_request_type,
                         plant_id=plant_id, requester=requester, limit=limit, offset=skip)
    return [AccessRequestOut.model_validate(r) for r in rows]

@router.get("/{request_id}", response_model=AccessRequestOut)
def api_get_request(request_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    return request_out(db, get_request(db, request_id))

@router.post("/{request_id}/approve", response_model=AccessRequestOut)
def api_approve(request_id: int, body: DecisionIn = DecisionIn(), db: Session = Depends(get_db),
                user: ActingUser = Depends(get_current_user)):
    return request_out(db, approve(db, request_id, user, body.comments))

@router.post("/{request_id}/reject", response_model=AccessRequestOut)
def api_reject(request_id: int, body: DecisionIn, db: Session = Depends(get_db),
               user: ActingUser = Depends(get_current_user)):
    return request_out(db, reject(db, request_id, user, body.comments))
