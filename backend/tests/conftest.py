import os

# Settings are cached on first import; point the app engine at an in-memory database.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.api.deps import get_db, get_session_factory  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.db.base import Base  # noqa: E402
from app.main import app  # noqa: E402
from app.models.academic import Batch, Department, Program, Subject  # noqa: E402
from app.models.faculty import Faculty  # noqa: E402
from app.models.time_slot import TimeSlot  # noqa: E402
from app.models.user import User, UserRole  # noqa: E402


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def _slot(name: str, start: str, end: str, sort_order: int) -> TimeSlot:
    hours_start, minutes_start = (int(part) for part in start.split(":"))
    hours_end, minutes_end = (int(part) for part in end.split(":"))
    duration = (hours_end * 60 + minutes_end) - (hours_start * 60 + minutes_start)
    return TimeSlot(name=name, start_time=start, end_time=end, duration=duration, sort_order=sort_order, is_active=True)


@pytest.fixture()
def seed(db_session):
    department = Department(name="Computer Science", short_name="CSE")
    other_department = Department(name="Mechanical", short_name="ME")
    db_session.add_all([department, other_department])
    db_session.flush()

    program = Program(name="B.Tech Computer Science", short_name="BTCS", department_id=department.id)
    db_session.add(program)
    db_session.flush()

    batch_a = Batch(name="CSE 2025 A", program_id=program.id, semester=1, start_year=2025)
    batch_b = Batch(name="CSE 2025 B", program_id=program.id, semester=1, start_year=2025)
    db_session.add_all([batch_a, batch_b])
    db_session.flush()

    faculty_1 = Faculty(name="Asha Rao", email="asha@example.edu", department_id=department.id)
    faculty_2 = Faculty(name="Vikram Iyer", email="vikram@example.edu", department_id=department.id)
    faculty_3 = Faculty(name="Meera Nair", email="meera@example.edu", department_id=department.id)
    db_session.add_all([faculty_1, faculty_2, faculty_3])
    db_session.flush()

    algorithms_a = Subject(
        name="Algorithms", code="CS101", total_hours=30, batch_id=batch_a.id, primary_faculty_id=faculty_1.id
    )
    networks_a = Subject(
        name="Networks", code="CS102", total_hours=30, batch_id=batch_a.id, primary_faculty_id=faculty_2.id
    )
    algorithms_b = Subject(
        name="Algorithms", code="CS101", total_hours=30, batch_id=batch_b.id, primary_faculty_id=faculty_3.id
    )
    db_session.add_all([algorithms_a, networks_a, algorithms_b])

    slot_1 = _slot("Period 1", "09:00", "10:00", 1)
    slot_2 = _slot("Period 2", "10:00", "11:00", 2)
    slot_3 = _slot("Period 3", "11:00", "12:00", 3)
    module_slot = _slot("Morning Module", "09:00", "11:00", 10)
    db_session.add_all([slot_1, slot_2, slot_3, module_slot])

    admin = User(name="Admin User", email="admin@example.edu", role=UserRole.admin)
    student = User(name="Student User", email="student@example.edu", role=UserRole.student)
    db_session.add_all([admin, student])
    db_session.commit()

    return SimpleNamespace(
        department=department,
        other_department=other_department,
        program=program,
        batch_a=batch_a,
        batch_b=batch_b,
        faculty_1=faculty_1,
        faculty_2=faculty_2,
        faculty_3=faculty_3,
        algorithms_a=algorithms_a,
        networks_a=networks_a,
        algorithms_b=algorithms_b,
        slot_1=slot_1,
        slot_2=slot_2,
        slot_3=slot_3,
        module_slot=module_slot,
        admin=admin,
        student=student,
    )


@pytest.fixture()
def admin_headers(seed):
    return {"Authorization": f"Bearer {create_access_token(seed.admin.id)}"}


@pytest.fixture()
def student_headers(seed):
    return {"Authorization": f"Bearer {create_access_token(seed.student.id)}"}
