from datetime import datetime

import pytest

from app import create_app, dispose_store
from models import db


class FrozenClock:
    """Clock whose current instant is set by the test"""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 15, 14, 30, 0))


@pytest.fixture
def app(tmp_path, clock):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'statistics.db'}",
    }, clock=clock)
    yield app
    with app.app_context():
        db.session.remove()
    dispose_store(app)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def tracker(app):
    return app.extensions['traffic_tracker']


@pytest.fixture
def stats(app):
    return app.extensions['traffic_stats']


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield
