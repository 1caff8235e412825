from typing import List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from uam.api.requests import closure_out
from uam.core.database import get_db
from uam.crud.task import list_tasks, plant_names, update_task
from uam.deps.auth import get_current_user
from uam.schemas import ActingUser, TaskOut, TaskQueueOut, TaskUpdateIn

router = APIRouter(prefix="/api/tasks", tags=["tasks"])

@router.get("", response_model=List[TaskQueueOut])
def api_list_tasks(plant: Optional[str] = None, plant_id: Optional[int] = None,
                   transaction_id: Optional[str] = None, task_status: Optional[str] = None,
                   access_request_type: Optional[str] = None, db: Session = Depends(get_db),
                   user: ActingUser = Depends(get_current_user)):
    rows = list_tasks(db, user, plant=plant, plant_id=plant_id, ritm_number=transaction_id,
                      task_status=task_status, access_request_type=access_request_type)
    names = plant_names(db, {t.plant_id for t in rows})
    out = []
    for t in rows:
        item = TaskQueueOut.model_validate(t)
        item.ritm_number = t.request.ritm_number
        item.request_name = t.request.vendor_name if t.request.is_vendor_sourced else t.request.name
        item.access_request_type = t.request.access_request_type
        item.request_status = t.request.status
        item.plant_name = names.get(t.plant_id)
        out.append(item)
    return out

@router.put("/{task_id}", response_model=TaskOut)
def api_update_task(task_id: int, body: TaskUpdateIn, db: Session = Depends(get_db),
                    user: ActingUser = Depends(get_current_user)):
    task, closure = update_task(db, task_id, body.task_status, body.task_data, user)
    out = TaskOut.model_validate(task)
    out.closure = closure_out(closure)
    return out
