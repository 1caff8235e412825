from __future__ import annotations
from sqlalchemy import Column, Integer, String, DateTime, Text, Date, UniqueConstraint
from datetime import datetime
from uam.core.database import Base

class ClosureRecord(Base):
    """How a task was fulfilled. Keyed by business numbers, not by task id."""
    __tablename__ = "task_closure"
    __table_args__ = (
        UniqueConstraint("ritm_number", "task_number", name="uq_task_closure_ritm_task"),
    )

    id = Column(Integer, primary_key=True)
    ritm_number = Column(String(32), nullable=False)
    task_number = Column(String(32), nullable=False)
    request_by = Column(String(255), nullable=True)
    employee_code = Column(String(64), nullable=True)
    name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    plant_name = Column(String(255), nullable=True)
    department = Column(String(255), nullable=True)
    application_name = Column(String(255), nullable=True)
    requested_role = Column(String(255), nullable=True)
    request_status = Column(String(32), nullable=True)
    assignment_group = Column(String(255), nullable=True)
    assigned_to = Column(Integer, nullable=True)
    allocated_id = Column(String(128), nullable=True)
    role_granted = Column(String(255), nullable=True)
    access = Column(String(255), nullable=True)
    additional_info = Column(Text, nullable=True)
    remarks = Column(Text, nullable=True)
    status = Column(String(32), nullable=True)
    access_request_type = Column(String(64), nullable=True)
    user_request_type = Column(String(64), nullable=True)
    from_date = Column(Date, nullable=True)
    to_date = Column(Date, nullable=True)
    password_hash = Column(String(255), nullable=True)     # bcrypt, never plaintext
    created_on = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_on = Column(DateTime, default=datetime.utcnow, nullable=False)
