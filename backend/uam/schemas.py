from __future__ import annotations
from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from uam.models.access_request import ACCESS_REQUEST_TYPES, TaskStatus, VENDOR_SOURCE

REQUEST_SOURCES = ("Self", "Others", VENDOR_SOURCE)


class ActingUser(BaseModel):
    """The authenticated principal, trusted as given."""
    id: int
    email: str
    name: Optional[str] = None
    roles: List[str] = []
    plant_scope: List[int] = []

    @property
    def display_name(self) -> str:
        return self.name or self.email

    @property
    def sees_all_plants(self) -> bool:
        return "admin" in self.roles

    def covers_plant(self, plant_id: int) -> bool:
        return self.sees_all_plants or plant_id in self.plant_scope


# ---------- admission ----------

class AdmissionQuery(BaseModel):
    plant_id: int
    department_id: int
    application_ids: List[int]
    requester: str
    access_request_type: str

class BulkQuery(BaseModel):
    plant_id: int
    department_id: int
    application_ids: List[int]


# ---------- request intake ----------

class TaskIn(BaseModel):
    application_id: int
    department_id: int
    plant_id: int
    role_id: Optional[int] = None
    reports_to: Optional[str] = None
    remarks: Optional[str] = None

    class Config:
        extra = "forbid"

class AccessRequestCreate(BaseModel):
    request_for_by: str
    name: str
    employee_code: Optional[str] = None
    employee_location: Optional[int] = None
    requester_email: Optional[str] = None
    access_request_type: str
    training_status: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_firm: Optional[str] = None
    vendor_code: Optional[str] = None
    vendor_allocated_id: Optional[str] = None
    remarks: Optional[str] = None
    tasks: List[TaskIn] = Field(min_length=1)

    class Config:
        extra = "forbid"

    @field_validator("request_for_by")
    @classmethod
    def _known_source(cls, v: str) -> str:
        if v not in REQUEST_SOURCES:
            raise ValueError(f"request_for_by must be one of {list(REQUEST_SOURCES)}")
        return v

    @field_validator("access_request_type")
    @classmethod
    def _known_type(cls, v: str) -> str:
        if v not in ACCESS_REQUEST_TYPES:
            raise ValueError(f"access_request_type must be one of {list(ACCESS_REQUEST_TYPES)}")
        return v

    @field_validator("name")
    @classmethod
    def _name_present(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name is required")
        return v.strip()

    @model_validator(mode="after")
    def _vendor_details(self) -> "AccessRequestCreate":
        if self.request_for_by == VENDOR_SOURCE and not ((self.vendor_name or "").strip() and (self.vendor_firm or "").strip()):
            raise ValueError("vendor_name and vendor_firm are mandatory for Vendor / OEM requests")
        return self

    @property
    def requester_identity(self) -> str:
        return (self.vendor_name if self.request_for_by == VENDOR_SOURCE else self.name) or ""


# ---------- decisions & closure ----------

class DecisionIn(BaseModel):
    comments: Optional[str] = None

class ClosureDataIn(BaseModel):
    ritm_number: Optional[str] = None
    task_number: Optional[str] = None
    request_by: Optional[str] = None
    employee_code: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    plant_name: Optional[str] = None
    department: Optional[str] = None
    application_name: Optional[str] = None
    requested_role: Optional[str] = None
    request_status: Optional[str] = None
    assignment_group: Optional[str] = None
    assigned_to: Optional[int] = None
    allocated_id: Optional[str] = None
    role_granted: Optional[str] = None
    access: Optional[str] = None
    additional_info: Optional[str] = None
    remarks: Optional[str] = None
    status: Optional[str] = None
    access_request_type: Optional[str] = None
    user_request_type: Optional[str] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    password: Optional[str] = None

    class Config:
        extra = "forbid"

class TaskUpdateIn(BaseModel):
    task_status: TaskStatus
    task_data: ClosureDataIn = ClosureDataIn()


# ---------- responses ----------

class TaskOut(BaseModel):
    id: int
    user_request_id: int
    task_number: Optional[str]
    application_id: int
    department_id: int
    plant_id: int
    role_id: Optional[int]
    task_status: str
    approver1_action: Optional[str] = None
    approver2_action: Optional[str] = None
    approver2_email: Optional[str] = None
    remarks: Optional[str] = None
    closure: Optional[Dict] = None
    class Config:
        from_attributes = True

class AccessRequestOut(BaseModel):
    id: int
    ritm_number: Optional[str]
    request_for_by: str
    name: str
    vendor_name: Optional[str] = None
    access_request_type: str
    status: str
    approver1_email: Optional[str] = None
    approver1_status: str
    approver2_email: Optional[str] = None
    approver2_status: str
    created_on: datetime
    completed_at: Optional[datetime] = None
    tasks: List[TaskOut] = []
    class Config:
        from_attributes = True

class TaskQueueOut(TaskOut):
    ritm_number: Optional[str] = None
    request_name: Optional[str] = None
    access_request_type: Optional[str] = None
    request_status: Optional[str] = None
    plant_name: Optional[str] = None

class AccessLogOut(BaseModel):
    id: int
    request_id: int
    task_id: int
    ritm_number: Optional[str]
    task_number: Optional[str]
    plant_id: int
    department_id: int
    application_id: int
    role_id: Optional[int] = None
    requester_key: str
    name: Optional[str] = None
    vendor_name: Optional[str] = None
    access_request_type: Optional[str] = None
    task_status: str
    request_status: Optional[str] = None
    approver1_status: Optional[str] = None
    approver2_status: Optional[str] = None
    approver2_email: Optional[str] = None
    updated_on: datetime
    completed_at: Optional[datetime] = None
    class Config:
        from_attributes = True
