import bcrypt
import pytest
from sqlalchemy.exc import OperationalError

from uam.core.errors import AuthorizationError, NotFoundError, PersistenceError, ValidationError
from uam.crud import task as task_crud
from uam.crud.approval import approve, reject
from uam.crud.request import closure_for, create_request, get_request
from uam.crud.task import list_tasks, update_task
from uam.models.access_log import AccessLogEntry
from uam.models.access_request import RequestTask, TaskStatus
from uam.models.audit import AuditLog
from uam.models.closure import ClosureRecord
from uam.schemas import ClosureDataIn

from conftest import ASHA, BALA, DEV, IT_SUPPORT, REQUESTER, sample


@pytest.fixture()
def approved(db, make_request):
    req = create_request(db, make_request(apps=(100, 101)), REQUESTER)
    approve(db, req.id, ASHA)
    return approve(db, req.id, BALA)


def test_closing_needs_both_approvals(db, make_request):
    req = create_request(db, make_request(), REQUESTER)
    task_id = req.tasks[0].id
    with pytest.raises(AuthorizationError):
        update_task(db, task_id, TaskStatus.CLOSED)

    approve(db, req.id, ASHA)
    with pytest.raises(AuthorizationError):
        update_task(db, task_id, TaskStatus.COMPLETED)
    db.expire_all()
    assert db.get(RequestTask, task_id).task_status == "Pending"
    assert db.query(ClosureRecord).count() == 0


def test_non_closing_updates_are_not_gated(db, make_request):
    req = create_request(db, make_request(), REQUESTER)
    task, _ = update_task(db, req.tasks[0].id, TaskStatus.IN_PROGRESS, ClosureDataIn(remarks="picked up"))
    assert task.task_status == "In Progress"
    assert task.remarks == "picked up"


def test_request_completes_only_when_every_task_is_closed(db, approved):
    first, second = approved.tasks
    before = sample("uam_task_dispositions_total", status="Closed")

    update_task(db, first.id, TaskStatus.CLOSED, ClosureDataIn(allocated_id="rkumar"))
    db.expire_all()
    req = get_request(db, approved.id)
    assert req.status == "Pending"
    assert req.completed_at is None

    update_task(db, second.id, TaskStatus.COMPLETED)
    db.expire_all()
    req = get_request(db, approved.id)
    assert req.status == "Completed"
    assert req.completed_at is not None

    rows = db.query(AccessLogEntry).filter_by(request_id=req.id).all()
    assert {r.request_status for r in rows} == {"Completed"}
    assert {r.task_status for r in rows} == {"Closed", "Completed"}
    assert sample("uam_task_dispositions_total", status="Closed") == before + 1


def test_closure_defaults_to_task_numbers_and_request_details(db, approved):
    t = approved.tasks[0]
    task, rec = update_task(db, t.id, TaskStatus.CLOSED, ClosureDataIn(
        allocated_id="rkumar", role_granted="Operator", password="Init#123",
    ), IT_SUPPORT)

    assert (rec.ritm_number, rec.task_number) == (approved.ritm_number, task.task_number)
    assert rec.name == "Ravi Kumar"
    assert rec.request_by == "Self"
    assert rec.status == "Closed"
    assert rec.role_granted == "Operator"
    assert bcrypt.checkpw(b"Init#123", rec.password_hash.encode())
    assert closure_for(db, approved, task).id == rec.id

    audit = db.query(AuditLog).filter_by(action="TASK_UPDATED", record_id=task.id).one()
    assert audit.actor == IT_SUPPORT.email
    assert audit.new_value["task_status"] == "Closed"


def test_closure_key_can_be_overridden(db, approved):
    t = approved.tasks[0]
    task, rec = update_task(db, t.id, TaskStatus.CLOSED,
                            ClosureDataIn(ritm_number="RITM-LEGACY", task_number="TASK-LEGACY"))
    assert (rec.ritm_number, rec.task_number) == ("RITM-LEGACY", "TASK-LEGACY")
    assert closure_for(db, approved, task).id == rec.id

    # re-closing without a key stays on the bound one
    _, again = update_task(db, t.id, TaskStatus.COMPLETED, ClosureDataIn(remarks="handed over"))
    assert again.id == rec.id
    assert db.query(ClosureRecord).count() == 1

    # the access log still carries the request's own numbers
    entry = db.query(AccessLogEntry).filter_by(task_id=t.id).one()
    assert (entry.ritm_number, entry.task_number) == (approved.ritm_number, task.task_number)


def test_closure_key_of_another_task_is_refused(db, approved):
    first, second = approved.tasks
    update_task(db, first.id, TaskStatus.CLOSED, ClosureDataIn(ritm_number="RITM-LEGACY", task_number="TASK-LEGACY"))
    with pytest.raises(ValidationError):
        update_task(db, second.id, TaskStatus.CLOSED,
                    ClosureDataIn(ritm_number="RITM-LEGACY", task_number="TASK-LEGACY"))
    with pytest.raises(ValidationError):
        update_task(db, second.id, TaskStatus.CLOSED, ClosureDataIn(task_number=first.task_number))
    db.expire_all()
    assert db.get(RequestTask, second.id).task_status == "Approved"
    assert db.get(RequestTask, second.id).closure_task_number is None


def test_reclosing_keeps_single_closure_and_credential(db, approved):
    t = approved.tasks[0]
    _, first = update_task(db, t.id, TaskStatus.CLOSED, ClosureDataIn(password="pw-1"))
    stored = first.password_hash
    _, again = update_task(db, t.id, TaskStatus.CLOSED, ClosureDataIn(remarks="re-issued badge"))
    assert db.query(ClosureRecord).count() == 1
    assert again.password_hash == stored
    assert again.remarks == "re-issued badge"


def test_failed_closure_write_rolls_back_task_update(db, approved, monkeypatch):
    t = approved.tasks[0]

    def boom(*args, **kwargs):
        raise OperationalError("INSERT INTO task_closure", {}, Exception("disk I/O error"))

    monkeypatch.setattr(task_crud, "upsert_closure", boom)
    with pytest.raises(PersistenceError):
        update_task(db, t.id, TaskStatus.CLOSED)

    db.expire_all()
    assert db.get(RequestTask, t.id).task_status == "Approved"
    assert get_request(db, approved.id).status == "Pending"
    entry = db.query(AccessLogEntry).filter_by(task_id=t.id).one()
    assert entry.task_status == "Approved"


def test_unexpected_error_also_rolls_back(db, approved, monkeypatch):
    t = approved.tasks[0]

    def bug(*args, **kwargs):
        raise RuntimeError("bug")

    monkeypatch.setattr(task_crud, "upsert_closure", bug)
    with pytest.raises(RuntimeError):
        update_task(db, t.id, TaskStatus.CLOSED)
    db.expire_all()
    assert db.get(RequestTask, t.id).task_status == "Approved"


def test_unknown_task_is_not_found(db):
    with pytest.raises(NotFoundError):
        update_task(db, 404, TaskStatus.CLOSED)


def test_closed_task_cannot_be_reopened(db, approved):
    first, second = approved.tasks
    update_task(db, first.id, TaskStatus.CLOSED)
    with pytest.raises(ValidationError):
        update_task(db, first.id, TaskStatus.IN_PROGRESS)

    update_task(db, second.id, TaskStatus.COMPLETED)
    with pytest.raises(ValidationError):
        update_task(db, second.id, TaskStatus.PENDING, ClosureDataIn(remarks="reopen"))

    db.expire_all()
    assert get_request(db, approved.id).status == "Completed"
    assert db.get(RequestTask, first.id).task_status == "Closed"
    assert db.get(RequestTask, second.id).task_status == "Completed"
    entry = db.query(AccessLogEntry).filter_by(task_id=second.id).one()
    assert (entry.task_status, entry.request_status) == ("Completed", "Completed")


def test_rejected_request_tasks_stay_rejected(db, make_request):
    req = create_request(db, make_request(), REQUESTER)
    reject(db, req.id, ASHA, "not needed")
    task_id = req.tasks[0].id

    with pytest.raises(ValidationError):
        update_task(db, task_id, TaskStatus.IN_PROGRESS)
    with pytest.raises(ValidationError):
        update_task(db, task_id, TaskStatus.CLOSED)

    db.expire_all()
    assert db.get(RequestTask, task_id).task_status == "Rejected"
    assert db.query(AccessLogEntry).filter_by(task_id=task_id).one().task_status == "Rejected"
    # nothing in flight, so the same access can be asked for again
    assert create_request(db, make_request(), REQUESTER).status == "Pending"


def test_closing_is_limited_to_supported_plants(db, approved, make_request):
    t = approved.tasks[0]
    with pytest.raises(AuthorizationError):
        update_task(db, t.id, TaskStatus.CLOSED, user=DEV)
    with pytest.raises(AuthorizationError):
        update_task(db, t.id, TaskStatus.IN_PROGRESS, user=BALA)

    other = create_request(db, make_request(apps=(200,), plant=20, dept=8), REQUESTER)
    with pytest.raises(AuthorizationError):
        update_task(db, other.tasks[0].id, TaskStatus.IN_PROGRESS, user=IT_SUPPORT)

    admin = DEV.model_copy(update={"roles": ["admin"]})
    task, _ = update_task(db, other.tasks[0].id, TaskStatus.IN_PROGRESS, user=admin)
    assert task.task_status == "In Progress"
    task, _ = update_task(db, t.id, TaskStatus.CLOSED, user=IT_SUPPORT)
    assert task.task_status == "Closed"


def test_task_queue_filters_and_scope(db, make_request):
    pune = create_request(db, make_request(apps=(100, 101)), REQUESTER)
    nashik = create_request(db, make_request(name="Meena Joshi", access_type="Password Reset",
                                             apps=(200,), plant=20, dept=8), REQUESTER)
    update_task(db, pune.tasks[0].id, TaskStatus.IN_PROGRESS)

    everything = list_tasks(db)
    assert [t.id for t in everything] == sorted((t.id for t in everything), reverse=True)
    assert len(everything) == 3

    assert {t.plant_id for t in list_tasks(db, IT_SUPPORT)} == {10}
    assert list_tasks(db, DEV) == []
    assert len(list_tasks(db, DEV.model_copy(update={"roles": ["admin"]}))) == 3

    assert [t.id for t in list_tasks(db, plant="Nashik")] == [nashik.tasks[0].id]
    assert [t.id for t in list_tasks(db, IT_SUPPORT, plant="Nashik")] == []
    assert len(list_tasks(db, plant_id=10)) == 2
    assert len(list_tasks(db, ritm_number=pune.ritm_number)) == 2
    assert [t.id for t in list_tasks(db, task_status="In Progress")] == [pune.tasks[0].id]
    assert [t.id for t in list_tasks(db, access_request_type="Password Reset")] == [nashik.tasks[0].id]
