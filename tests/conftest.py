"""
Shared fixtures: a temporary SQLite store, a seeded user directory and small form builders.
"""
from datetime import datetime, timedelta, timezone
from typing import List

import pytest
from faker import Faker

from src.app.config import Settings
from src.db.models import AudienceSpec, DirectoryUser, Form, Question, Section
from src.db.repository import SQLiteRepository

fake = Faker()
Faker.seed(1234)

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

# Fixed people the tests refer to by id/name.
DIRECTORY: List[DirectoryUser] = [
    DirectoryUser(1, "Ana Reyes", "student", "ana@example.edu", "CS", "BSCS-1A"),
    DirectoryUser(2, "Ben Cruz", "student", "ben@example.edu", "CS", "BSCS-1A"),
    DirectoryUser(3, "Carla Diaz", "student", "carla@example.edu", "CS", "BSCS-2A"),
    DirectoryUser(4, "Dan Lim", "student", "dan@example.edu", "IT", "BSIT-1A"),
    DirectoryUser(5, "Eve Tan", "student", "eve@example.edu", "CS", "BSCS-1A", status="inactive"),
    DirectoryUser(10, "Ella Santos", "instructor", "ella@example.edu", "CS"),
    DirectoryUser(11, "Fred Uy", "instructor", "fred@example.edu", "IT"),
    DirectoryUser(20, "Gina Ong", "alumni", "gina@example.com", company="Acme"),
    DirectoryUser(21, "Hugo Sy", "alumni", "hugo@example.com", company="Globex"),
    DirectoryUser(30, "Ivy Go", "employer", "ivy@acme.example", company="Acme"),
]

CS_STUDENT_IDS = {1, 2, 3}


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a per-test directory"""
    return Settings(
        db_path=str(tmp_path / "feedback.db"),
        drafts_dir=str(tmp_path / "drafts"),
        db_timeout_seconds=5,
        log_level="DEBUG",
        log_json=False,
        default_window_days=30,
        rating_scale_max=5,
        linear_scale_default_min=1,
        linear_scale_default_max=10,
    )


@pytest.fixture
def repo(settings) -> SQLiteRepository:
    """Empty repository with the schema created"""
    r = SQLiteRepository(settings.db_path, timeout=settings.db_timeout_seconds)
    r.init_schema()
    return r


@pytest.fixture
def seeded_repo(repo) -> SQLiteRepository:
    """Repository with the fixed directory plus some synthetic IT students"""
    repo.upsert_users(DIRECTORY)
    repo.upsert_users(
        DirectoryUser(100 + i, fake.name(), "student", fake.email(), "IT", "BSIT-2A")
        for i in range(5)
    )
    return repo


@pytest.fixture
def now() -> datetime:
    return NOW


def make_form(**overrides) -> Form:
    base = dict(
        id=None,
        title="Course Eval",
        description="End of term evaluation",
        category="Academic",
        target_audience=AudienceSpec("Students", department="CS"),
        questions=(Question(id="q1", type="rating", prompt="Rate the course", required=True, order=0),),
    )
    base.update(overrides)
    return Form(**base)


@pytest.fixture
def course_eval() -> Form:
    return make_form()


@pytest.fixture
def sectioned_form() -> Form:
    """One section with two questions plus one standalone question after it"""
    return make_form(
        title="Teaching Feedback",
        sections=(Section(id="s1", title="Instructor", order=0),),
        questions=(
            Question(id="q1", type="rating", prompt="Clarity", required=True, section_id="s1"),
            Question(id="q2", type="multiple-choice", prompt="Pace", options=("Slow", "Right", "Fast"),
                     section_id="s1"),
            Question(id="q3", type="textarea", prompt="Comments", order=1),
        ),
    )


@pytest.fixture
def window(now):
    return now - timedelta(days=1), now + timedelta(days=29)
