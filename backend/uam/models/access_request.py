from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime
import enum

from uam.core.database import Base

class RequestStatus(str, enum.Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    REJECTED = "Rejected"

class ApprovalStatus(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"

class TaskStatus(str, enum.Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    IN_PROGRESS = "In Progress"
    CLOSED = "Closed"
    COMPLETED = "Completed"

# Task states that still hold (or are about to hold) access
ACTIVE_TASK_STATUSES = (TaskStatus.PENDING.value, TaskStatus.APPROVED.value, TaskStatus.IN_PROGRESS.value)
CLOSED_TASK_STATUSES = (TaskStatus.CLOSED.value, TaskStatus.COMPLETED.value)

VENDOR_SOURCE = "Vendor / OEM"

NEW_USER_CREATION = "New User Creation"
BULK_NEW_USER_CREATION = "Bulk New User Creation"
MODIFY_ACCESS = "Modify Access"
BULK_DEACTIVATION = "Bulk De-activation"

ACCESS_REQUEST_TYPES = (
    NEW_USER_CREATION,
    MODIFY_ACCESS,
    "Password Reset",
    "Account Unlock",
    "Account Unlock and Password Reset",
    "Active / Enable User Access",
    "Deactivation / Disable / Remove User Access",
    BULK_DEACTIVATION,
    BULK_NEW_USER_CREATION,
)
BULK_ACCESS_TYPES = (BULK_NEW_USER_CREATION, BULK_DEACTIVATION)


class AccessRequest(Base):
    __tablename__ = "user_requests"

    id = Column(Integer, primary_key=True, index=True)
    ritm_number = Column(String(32), unique=True, index=True, nullable=True)
    request_for_by = Column(String(32), nullable=False)       # "Self" | "Others" | "Vendor / OEM"
    name = Column(String(255), nullable=False)
    employee_code = Column(String(64), nullable=True)
    employee_location = Column(Integer, nullable=True)
    requester_email = Column(String(255), nullable=True)
    access_request_type = Column(String(64), nullable=False)
    training_status = Column(String(16), nullable=True)
    vendor_name = Column(String(255), nullable=True)
    vendor_firm = Column(String(255), nullable=True)
    vendor_code = Column(String(64), nullable=True)
    vendor_allocated_id = Column(String(64), nullable=True)
    remarks = Column(Text, nullable=True)

    status = Column(String(32), default=RequestStatus.PENDING.value, nullable=False, index=True)
    approver1_email = Column(String(255), nullable=True)
    approver1_name = Column(String(255), nullable=True)
    approver1_status = Column(String(32), default=ApprovalStatus.PENDING.value, nullable=False)
    approver1_action_at = Column(DateTime, nullable=True)
    approver2_email = Column(String(255), nullable=True)
    approver2_name = Column(String(255), nullable=True)
    approver2_status = Column(String(32), default=ApprovalStatus.PENDING.value, nullable=False)
    approver2_action_at = Column(DateTime, nullable=True)

    created_by = Column(String(255), nullable=True)
    created_on = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_on = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    tasks = relationship("RequestTask", back_populates="request", order_by="RequestTask.id")

    @property
    def is_vendor_sourced(self) -> bool:
        return self.request_for_by == VENDOR_SOURCE


class RequestTask(Base):
    __tablename__ = "task_requests"

    id = Column(Integer, primary_key=True, index=True)
    task_number = Column(String(32), unique=True, index=True, nullable=True)
    user_request_id = Column(Integer, ForeignKey("user_requests.id"), nullable=False, index=True)
    application_id = Column(Integer, nullable=False, index=True)
    department_id = Column(Integer, nullable=False, index=True)
    role_id = Column(Integer, nullable=True)
    plant_id = Column(Integer, nullable=False, index=True)      # "location" in the plant master
    reports_to = Column(String(255), nullable=True)
    task_status = Column(String(32), default=TaskStatus.PENDING.value, nullable=False, index=True)
    remarks = Column(Text, nullable=True)

    approver1_name = Column(String(255), nullable=True)
    approver1_email = Column(String(255), nullable=True)
    approver1_action = Column(String(32), nullable=True)
    approver1_action_at = Column(DateTime, nullable=True)
    approver1_comments = Column(Text, nullable=True)
    approver2_name = Column(String(255), nullable=True)
    approver2_email = Column(String(255), nullable=True)
    approver2_action = Column(String(32), nullable=True)
    approver2_action_at = Column(DateTime, nullable=True)
    approver2_comments = Column(Text, nullable=True)
    approver2_pool_emails = Column(Text, nullable=True)         # comma separated, notification targets only
    # set only when closure details were filed under a key other than RITM/TASK numbers
    closure_ritm_number = Column(String(32), nullable=True)
    closure_task_number = Column(String(32), nullable=True)

    created_on = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_on = Column(DateTime, default=datetime.utcnow, nullable=False)

    request = relationship("AccessRequest", back_populates="tasks")

    @property
    def is_closed(self) -> bool:
        return self.task_status in CLOSED_TASK_STATUSES
