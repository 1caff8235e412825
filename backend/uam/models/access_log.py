from __future__ import annotations
from sqlalchemy import Column, Integer, String, DateTime, Text, UniqueConstraint, Index
from datetime import datetime
from uam.core.database import Base

class AccessLogEntry(Base):
    """Latest disposition of one task, read back by admission checks."""
    __tablename__ = "access_log"
    __table_args__ = (
        UniqueConstraint("request_id", "task_id", name="uq_access_log_request_task"),
        Index("ix_access_log_tuple", "plant_id", "department_id", "application_id", "requester_key"),
    )

    id = Column(Integer, primary_key=True)
    request_id = Column(Integer, nullable=False)
    task_id = Column(Integer, nullable=False)
    ritm_number = Column(String(32), nullable=True)
    task_number = Column(String(32), nullable=True)

    plant_id = Column(Integer, nullable=False)
    department_id = Column(Integer, nullable=False)
    application_id = Column(Integer, nullable=False)
    role_id = Column(Integer, nullable=True)
    requester_key = Column(String(255), nullable=False)      # normalized name or vendor name
    request_for_by = Column(String(32), nullable=True)
    name = Column(String(255), nullable=True)
    vendor_name = Column(String(255), nullable=True)
    access_request_type = Column(String(64), nullable=True)

    task_status = Column(String(32), nullable=False)
    request_status = Column(String(32), nullable=True)
    approver1_status = Column(String(32), nullable=True)
    approver1_email = Column(String(255), nullable=True)
    approver1_name = Column(String(255), nullable=True)
    approver2_status = Column(String(32), nullable=True)
    approver2_email = Column(String(255), nullable=True)
    approver2_name = Column(String(255), nullable=True)
    remarks = Column(Text, nullable=True)

    created_on = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_on = Column(DateTime, default=datetime.utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
