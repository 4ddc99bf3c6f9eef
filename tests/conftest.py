"""
Pytest configuration and fixtures for chatnotes tests
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_TABLES"] = "False"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chatnotes.api.auth.utils import create_access_token
from chatnotes.api.groups.models import Group, GroupMember
from chatnotes.database.database import get_db
from chatnotes.main import app
from chatnotes.models import Base, User
from chatnotes.websocket.broadcaster import Broadcaster
from chatnotes.websocket.dependencies import get_transport

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeTransport:
    """Records every emit instead of talking to Socket.IO"""

    def __init__(self):
        self.emitted = []
        self.online = set()

    async def emit(self, event, data, room):
        self.emitted.append((event, data, room))

    def is_user_online(self, user_id):
        return user_id in self.online

    def get_connection_stats(self):
        return {"total_connections": len(self.online), "unique_users": len(self.online), "connections_per_user": {}}

    def events(self, name):
        return [(data, room) for event, data, room in self.emitted if event == name]

    def rooms(self, name):
        return [room for event, _, room in self.emitted if event == name]


@pytest.fixture(scope='function')
def tables():
    """Fresh schema for every test"""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope='function')
def db_session(tables):
    """Provide the database session for tests"""
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def session_factory(tables):
    """Session factory bound to the test database, for code that opens its own sessions"""
    return TestingSessionLocal


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def broadcaster(transport, db_session):
    return Broadcaster(transport, db_session)


@pytest.fixture
def make_user(db_session):
    """Factory for persisted users"""

    def _make_user(username, **kwargs):
        kwargs.setdefault("name", username.capitalize())
        user = User(username=username, **kwargs)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def carol(make_user):
    return make_user("carol")


@pytest.fixture
def admin(make_user):
    return make_user("root", role="admin")


@pytest.fixture
def make_group(db_session):
    """Factory for a group with the given members, the first one owning it"""

    def _make_group(name, members, **kwargs):
        owner = members[0]
        group = Group(name=name, owner_id=owner.id, **kwargs)
        db_session.add(group)
        db_session.flush()
        for member in members:
            role = "owner" if member.id == owner.id else "member"
            db_session.add(GroupMember(group_id=group.id, user_id=member.id, role=role))
        db_session.commit()
        db_session.refresh(group)
        return group

    return _make_group


@pytest.fixture
def client(db_session, transport):
    """Test client sharing the test session and the fake transport"""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_transport] = lambda: transport
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Bearer header builder for a user"""

    def _auth_headers(user):
        token = create_access_token({"sub": user.username})
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers
