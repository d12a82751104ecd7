import pytest

from shelfmark import create_app
from shelfmark.config import TestConfig
from shelfmark.extensions import db
from shelfmark.models import User


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    def _make(username: str, password: str = "secret") -> int:
        with app.app_context():
            user = User(username=username, is_active=True)
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            return user.id

    return _make


@pytest.fixture
def auth_headers(client, make_user):
    def _headers(username: str, password: str = "secret") -> dict:
        make_user(username, password)
        response = client.post(
            "/api/v1/auth/token",
            json={"username": username, "password": password, "token_name": "pytest"},
        )
        assert response.status_code == 200
        return {"Authorization": f"Bearer {response.get_json()['token']}"}

    return _headers
