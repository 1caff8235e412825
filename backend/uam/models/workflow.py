from sqlalchemy import Column, Integer, String, DateTime, Boolean
from datetime import datetime
from uam.core.database import Base

class ApprovalWorkflow(Base):
    __tablename__ = "approval_workflows"
    id = Column(Integer, primary_key=True)
    transaction_id = Column(String(32), nullable=True)
    workflow_type = Column(String(64), nullable=True)
    plant_id = Column(Integer, nullable=False, index=True)
    department_id = Column(Integer, nullable=True)
    # each slot is a single user id or a comma separated pool, e.g. "1827,1426"
    approver_1_id = Column(String(255), nullable=True)
    approver_2_id = Column(String(255), nullable=True)
    approver_3_id = Column(String(255), nullable=True)
    approver_4_id = Column(String(255), nullable=True)
    approver_5_id = Column(String(255), nullable=True)
    max_approvers = Column(Integer, default=2)
    is_active = Column(Boolean, default=True, nullable=False)
    created_on = Column(DateTime, default=datetime.utcnow, nullable=False)
