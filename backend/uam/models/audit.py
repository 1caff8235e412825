from sqlalchemy import Column, Integer, String, DateTime, JSON, Text
from datetime import datetime
from uam.core.database import Base

class AuditLog(Base):
    __tablename__ = "audit_log"
    id = Column(Integer, primary_key=True)
    actor = Column(String(255), nullable=True)
    module = Column(String(64), index=True)              # e.g., "user_request", "task"
    table_name = Column(String(64), nullable=False)
    record_id = Column(Integer, index=True, nullable=True)
    action = Column(String(128), index=True)             # e.g., APPROVE_L1, REJECT_L2, TASK_UPDATED
    old_value = Column(JSON, default=dict)
    new_value = Column(JSON, default=dict)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
