from dataclasses import asdict
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from uam.core.database import get_db
from uam.deps.auth import get_current_user
from uam.schemas import AdmissionQuery, BulkQuery
from uam.services.admission import check_access_log_conflict, check_in_flight, validate_bulk_creation

router = APIRouter(prefix="/api/admission", tags=["admission"])

@router.post("/in-flight")
def in_flight(body: AdmissionQuery, db: Session = Depends(get_db), user=Depends(get_current_user)):
    res = check_in_flight(db, body.plant_id, body.department_id, body.application_ids,
                          body.requester, body.access_request_type)
    return asdict(res)

@router.post("/access-log")
def access_log(body: AdmissionQuery, db: Session = Depends(get_db), user=Depends(get_current_user)):
    res = check_access_log_conflict(db, body.plant_id, body.department_id, body.application_ids,
                                    body.requester, body.access_request_type)
    return asdict(res)

@router.post("/bulk")
def bulk(body: BulkQuery, db: Session = Depends(get_db), user=Depends(get_current_user)):
    return asdict(validate_bulk_creation(db, body.plant_id, body.department_id, body.application_ids))
