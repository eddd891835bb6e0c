"""
Pytest configuration and fixtures
"""
import os

# Settings are read at import time; tests never touch a real database
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-pytest")

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.engine import Engine
from app.main import app
from app.db.base import Base
from app.core.deps import get_db
from app.core.security import create_access_token
from app.db.init_db import seed_request_types, seed_role_inheritance

# Import all models to ensure they're registered with Base.metadata
from app.models import (
    Employee,
    CollarType,
    HRAssignment,
    RoleInheritance,
    AuditLog,
    AbsenceRequest,
    ApprovalHistory,
    EscalationLog,
    RequestTypeConfig,
    PayrollPeriod,
    OutboxEvent,
)  # noqa


# Use in-memory SQLite for testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Monday 2026-03-02 09:00 in Mexico City
NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


# Enable foreign keys for SQLite
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    """Test client fixture with database override"""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_employee(db, emp_code, role="employee", collar_type=CollarType.WHITE_COLLAR.value, **kwargs):
    employee = Employee(
        emp_code=emp_code,
        name=kwargs.pop("name", f"Employee {emp_code}"),
        role=role,
        collar_type=collar_type,
        active=kwargs.pop("active", True),
        **kwargs,
    )
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee


def auth_headers(employee) -> dict:
    token = create_access_token({"sub": str(employee.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def seeded(db):
    """Default request types and role inheritance edges"""
    seed_request_types(db)
    seed_role_inheritance(db)
    return db


@pytest.fixture
def org(seeded):
    """
    A small directory:
    gm <- sup <- white, blue, union ; combo (sup_and_gm) <- white_combo, blue_combo
    plus hr, hr_bg (assigned to sindicalizado), payroll, admin and an outsider.
    """
    db = seeded
    admin = make_employee(db, "ADM-001", role="admin")
    hr = make_employee(db, "HR-001", role="hr")
    hr_bg = make_employee(db, "HR-002", role="hr_blue_gray")
    payroll = make_employee(db, "PR-001", role="payroll")
    gm = make_employee(db, "GM-001", role="gm")
    sup = make_employee(db, "SUP-001", role="supervisor", general_manager_id=gm.id)
    combo = make_employee(db, "SUP-002", role="sup_and_gm")

    white = make_employee(db, "EMP-001", supervisor_id=sup.id, general_manager_id=gm.id)
    blue = make_employee(
        db, "EMP-002",
        collar_type=CollarType.BLUE_COLLAR.value,
        supervisor_id=sup.id,
        general_manager_id=gm.id,
    )
    union = make_employee(
        db, "EMP-003",
        employee_type="sindicalizado",
        supervisor_id=sup.id,
        general_manager_id=gm.id,
    )
    white_combo = make_employee(db, "EMP-004", supervisor_id=combo.id)
    blue_combo = make_employee(db, "EMP-005", collar_type=CollarType.GRAY_COLLAR.value, supervisor_id=combo.id)
    outsider = make_employee(db, "EMP-006", supervisor_id=sup.id, general_manager_id=gm.id)

    db.add(HRAssignment(hr_user_id=hr_bg.id, employee_type="sindicalizado"))
    db.commit()

    return SimpleNamespace(
        admin=admin,
        hr=hr,
        hr_bg=hr_bg,
        payroll=payroll,
        gm=gm,
        sup=sup,
        combo=combo,
        white=white,
        blue=blue,
        union=union,
        white_combo=white_combo,
        blue_combo=blue_combo,
        outsider=outsider,
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def employee_factory(db):
    def _make(emp_code, role="employee", **kwargs):
        return make_employee(db, emp_code, role=role, **kwargs)
    return _make


@pytest.fixture
def headers_for():
    return auth_headers
