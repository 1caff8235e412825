from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from uam.core.database import get_db
from uam.crud.access_log import list_access_log
from uam.deps.auth import get_current_user
from uam.schemas import AccessLogOut

router = APIRouter(prefix="/api/access-logs", tags=["access-log"])

@router.get("", response_model=List[AccessLogOut])
def api_list_access_log(plant_id: Optional[int] = None, department_id: Optional[int] = None,
                        application_id: Optional[int] = None, requester: Optional[str] = None,
                        task_status: Optional[str] = None, request_id: Optional[int] = None,
                        skip: int = 0, limit: int = 200, db: Session = Depends(get_db),
                        user=Depends(get_current_user)):
    rows = list_access_log(db, plant_id=plant_id, department_id=department_id,
                           application_id=application_id, requester=requester,
                           task_status=task_status, request_id=request_id, limit=limit, offset=skip)
    return [AccessLogOut.model_validate(r) for r in rows]
