from __future__ import annotations
import os
from html import escape
from typing import Iterable, Optional

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")

def _task_rows(tasks: Iterable) -> str:
    rows = []
    for t in tasks:
        rows.append(
            "<tr>"
            f"<td>{escape(str(t.task_number or t.id))}</td>"
            f"<td>{t.application_id}</td>"
            f"<td>{t.department_id}</td>"
            f"<td>{t.role_id if t.role_id is not None else '-'}</td>"
            f"<td>{t.plant_id}</td>"
            f"<td>{escape(t.task_status)}</td>"
            "</tr>"
        )
    return "".join(rows)

def _request_table(req, tasks: Iterable) -> str:
    requester = req.vendor_name if req.is_vendor_sourced and req.vendor_name else req.name
    return (
        f"<p><b>Request:</b> {escape(req.ritm_number or str(req.id))}<br/>"
        f"<b>Requested for:</b> {escape(requester or '')} ({escape(req.request_for_by)})<br/>"
        f"<b>Access type:</b> {escape(req.access_request_type)}</p>"
        "<table border='1' cellpadding='4' cellspacing='0'>"
        "<tr><th>Task</th><th>Application</th><th>Department</th><th>Role</th><th>Plant</th><th>Status</th></tr>"
        f"{_task_rows(tasks)}</table>"
    )

def approval_needed_email(req, tasks, approver_name: Optional[str], level: str) -> tuple[str, str]:
    """(subject, html) asking an approver to act on a request."""
    link = f"{FRONTEND_URL}/approve-request/{req.id}"
    subject = f"User Request Approval Needed - {level} ({req.ritm_number or req.id})"
    html = (
        f"<p>Dear {escape(approver_name or 'Approver')},</p>"
        "<p>The following access request is waiting for your decision.</p>"
        f"{_request_table(req, tasks)}"
        f"<p><a href='{escape(link)}'>Review the request</a></p>"
    )
    return subject, html

def decision_email(req, tasks, decided_by: str, decision: str, comments: Optional[str]) -> tuple[str, str]:
    """(subject, html) telling the requester and approver1 about a decision."""
    subject = f"User Request {decision} ({req.ritm_number or req.id})"
    html = (
        f"<p>The access request below was <b>{escape(decision.lower())}</b> by {escape(decided_by)}.</p>"
        f"{_request_table(req, tasks)}"
    )
    if comments:
        html += f"<p><b>Comments:</b> {escape(comments)}</p>"
    return subject, html
