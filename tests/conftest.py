from __future__ import annotations

import os
from uuid import uuid4

# Settings are read at import time, so the test environment has to exist first.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENV"] = "test"
os.environ["ALLOWED_HOSTS"] = "*"
os.environ["LOG_JSON"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from fastapi.testclient import TestClient

from accounts.db.base import Base
from accounts.db.session import SessionLocal, engine
from accounts.main import app
import accounts.models  # noqa: F401
from accounts.services.delivery import get_email_sender, get_sms_sender
from tests.testkit import ApiClient, FakeMailer, FakeSms, IdentityFactory


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def sms() -> FakeSms:
    return FakeSms()


@pytest.fixture
def api(mailer, sms) -> ApiClient:
    app.dependency_overrides[get_email_sender] = lambda: mailer
    app.dependency_overrides[get_sms_sender] = lambda: sms
    try:
        with TestClient(app) as client:
            yield ApiClient(client)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def identity_factory() -> IdentityFactory:
    return IdentityFactory(seed=uuid4().hex[:8])
