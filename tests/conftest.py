"""
Shared fixtures: an in-memory SQLite database seeded with users, applications
and plant workflows, a stub mail relay, and an API client bound to the same
database.

Plant 10 / department 7: approver 1 is Asha (id 1), approver 2 pool is
Bala (id 2) and Chitra (id 3). Plant 20 / department 8: approver 1 is Dev (id 5).
Indu (id 6) works tasks for plant 10 only.
"""
import os, tempfile

# must be set before uam is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("AUDIT_DIR", tempfile.mkdtemp(prefix="uam-audit-"))
os.environ["NOTIFY_WEBHOOK_URL"] = ""
os.environ["LOG_JSON"] = "0"

import pytest
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import uam.models  # noqa: F401
from uam.core.database import Base, get_db
from uam.core.security import create_access_token
from uam.main import app
from uam.models.access_request import NEW_USER_CREATION
from uam.models.reference import Application, Plant, User
from uam.models.workflow import ApprovalWorkflow
from uam.schemas import AccessRequestCreate, ActingUser, TaskIn
from uam.utils import audit_sink
from uam.services.notify import set_notify_webhook

RELAY_URL = "http://relay.test/send"

ASHA = ActingUser(id=1, email="asha.rao@plant.test", name="Asha Rao")
BALA = ActingUser(id=2, email="bala.s@plant.test", name="Bala S")
CHITRA = ActingUser(id=3, email="chitra.n@plant.test", name="Chitra N")
OUTSIDER = ActingUser(id=4, email="omar@plant.test", name="Omar")
DEV = ActingUser(id=5, email="dev.p@plant.test", name="Dev P")
IT_SUPPORT = ActingUser(id=6, email="indu.it@plant.test", name="Indu IT", plant_scope=[10])
REQUESTER = ActingUser(id=50, email="ravi.kumar@plant.test", name="Ravi Kumar")


def seed(db):
    for u in (ASHA, BALA, CHITRA, OUTSIDER, DEV, IT_SUPPORT, REQUESTER):
        db.add(User(id=u.id, employee_name=u.name, employee_code=f"E{u.id:04d}", email=u.email))
    db.add(Plant(id=10, plant_name="Pune"))
    db.add(Plant(id=20, plant_name="Nashik"))
    for app_id in range(100, 109):
        db.add(Application(id=app_id, display_name=f"App {app_id}", plant_id=10, department_id=7))
    db.add(Application(id=200, display_name="App 200", plant_id=20, department_id=8))
    db.add(ApprovalWorkflow(id=1, plant_id=10, department_id=7, approver_1_id="1", approver_2_id="2,3"))
    db.add(ApprovalWorkflow(id=2, plant_id=20, department_id=8, approver_1_id="5", approver_2_id="2"))
    db.commit()


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    seed(s)
    yield s
    s.close()


@pytest.fixture(autouse=True)
def audit_dir(tmp_path, monkeypatch):
    d = tmp_path / "audit"
    monkeypatch.setattr(audit_sink, "AUDIT_DIR", d)
    return d


class _Relay:
    def __init__(self, status_code=202):
        self.status_code = status_code
        self.sent = []

    def post(self, url, json=None, timeout=None):
        self.sent.append({"url": url, **(json or {})})
        return _Response(self.status_code)


class _Response:
    def __init__(self, status_code):
        self.status_code = status_code
        self.text = "" if status_code < 300 else "relay says no"


@pytest.fixture(autouse=True)
def relay(monkeypatch):
    """Records every notification instead of posting it."""
    stub = _Relay()
    monkeypatch.setattr("uam.services.notify.requests.post", stub.post)
    set_notify_webhook(RELAY_URL)
    yield stub
    set_notify_webhook(None)


@pytest.fixture()
def make_request():
    def _make(name="Ravi Kumar", access_type=NEW_USER_CREATION, apps=(100,), plant=10, dept=7, **kw):
        fields = dict(
            request_for_by="Self",
            name=name,
            employee_code="E0050",
            requester_email=REQUESTER.email,
            access_request_type=access_type,
            tasks=[TaskIn(application_id=a, department_id=dept, plant_id=plant) for a in apps],
        )
        fields.update(kw)
        return AccessRequestCreate(**fields)
    return _make


@pytest.fixture()
def client(session_factory, db):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()
    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(user: ActingUser, roles=()):
    token = create_access_token(user.id, user.email, user.name, roles=roles, plant_scope=user.plant_scope)
    return {"Authorization": f"Bearer {token}"}


def sample(name, **labels):
    return REGISTRY.get_sample_value(name, labels) or 0.0
