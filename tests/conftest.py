import uuid

import pytest
from fastapi.testclient import TestClient

from civic_issues.api import create_app, limiter
from civic_issues.auth import create_access_token
from civic_issues.config import Settings
from civic_issues.database import Database
from civic_issues.models.issue import Issue
from civic_issues.models.user import User
from civic_issues.storage import ImageStorage


@pytest.fixture
def database(tmp_path):
    """Provide an isolated SQLite database for each test."""
    db = Database(f"sqlite:///{tmp_path / 'issues.db'}").connect()
    db.create_all()
    yield db
    db.close()


@pytest.fixture
def make_user(database):
    def _make(name: str = "Asha Verma", role: str = "USER") -> str:
        with database.session() as session:
            user = User(
                name=name,
                email=f"{uuid.uuid4().hex}@Example.com",
                password_hash="not-a-real-hash",
                role=role,
            )
            session.add(user)
            session.commit()
            return user.id

    return _make


@pytest.fixture
def make_issue(database):
    def _make(owner_id: str, **fields) -> str:
        images = fields.pop("images", [])
        values = {
            "title": "Broken Street Light",
            "latitude": 28.6139,
            "longitude": 77.2090,
            **fields,
        }
        with database.session() as session:
            issue = Issue(user_id=owner_id, **values)
            issue.set_images(images)
            session.add(issue)
            session.commit()
            return issue.id

    return _make


@pytest.fixture
def storage():
    return ImageStorage(None)


@pytest.fixture
def client(database, storage):
    limiter.enabled = False
    app = create_app(Settings(), database, storage)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    def _headers(user_id: str, role: str = "USER") -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}

    return _headers
