from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from app import create_app
from app.core.config import Config
from app.core.extensions import db
from app.core.models import seed_demo_data

FIXED_TODAY = date(2024, 6, 1)


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SECRET_KEY = "test-secret"
    LOG_LEVEL = "WARNING"
    COLLECTIVE_BURIAL_MAX_PERSONS_PER_APPLICATION = 10
    COLLECTIVE_BURIAL_MAX_TOTAL_CAPACITY = 500
    COLLECTIVE_BURIAL_WARNING_THRESHOLD = 80.0
    COLLECTIVE_BURIAL_CRITICAL_THRESHOLD = 95.0
    COLLECTIVE_BURIAL_CLOCK = staticmethod(lambda: FIXED_TODAY)


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def file_app(tmp_path):
    database = tmp_path / "burial.db"

    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{database}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        COLLECTIVE_BURIAL_MAX_TOTAL_CAPACITY = 6

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
        seed_demo_data(db.session)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login_admin(client):
    def _login():
        return client.post(
            "/auth/login",
            json={"email": "admin@reien.local", "password": "admin123"},
        )

    return _login


@pytest.fixture
def login_operator(client):
    def _login():
        return client.post(
            "/auth/login",
            json={"email": "staff@reien.local", "password": "staff123"},
        )

    return _login
