from .access_request import AccessRequest, RequestTask, RequestStatus, ApprovalStatus, TaskStatus
from .workflow import ApprovalWorkflow
from .reference import User, Application, Plant
from .access_log import AccessLogEntry
from .closure import ClosureRecord
from .audit import AuditLog
