import base64
import io
import logging
import os
from datetime import date
from decimal import Decimal

import pytest
from dotenv import find_dotenv, load_dotenv
from fastapi.testclient import TestClient
from PIL import Image, ImageDraw
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .core.db import Base, get_db
from .core.jwt import create_account_token
from .esign import models as esign_models  # noqa: F401  registers tables
from .esign.services import envelope_service, provider_connection_service, webhook_service
from .leases import services as lease_services
from .leases.models import Lease
from .main import leasesign_app as fast_api_app
from .signing import models as signing_models  # noqa: F401  registers tables
from .signing.services import native_signing_service, signature_request_service
from .utils.s3_utils import StorageError

logger = logging.getLogger(__name__)

env_file = find_dotenv(f'.env{os.getenv("ENV", "")}')
logger.info("Fetching env_file %s", env_file)
load_dotenv(env_file)

engine = create_engine(
    "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

LANDLORD_ACCOUNT_ID = 501


def _signature_data_url() -> str:
    image = Image.new("RGBA", (240, 80), (255, 255, 255, 0))
    draw = ImageDraw.Draw(image)
    draw.line([(10, 60), (80, 20), (150, 60), (230, 15)], fill=(20, 20, 120, 255), width=4)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


SIGNATURE_IMAGE = _signature_data_url()


class FakeStorage:
    """In-memory stand-in for S3Utils"""

    def __init__(self):
        self.blobs = {}
        self.fail_uploads = False
        self.fail_suffix = None
        self.deleted = []

    def upload_bytes(self, data, key, content_type=None, metadata=None):
        if self.fail_uploads or (self.fail_suffix and key.endswith(self.fail_suffix)):
            raise StorageError("Failed to upload file to S3", {"key": key})
        self.blobs[key] = bytes(data)
        return key

    def download_file(self, key):
        if key not in self.blobs:
            raise StorageError("Failed to download file from S3", {"key": key})
        return self.blobs[key]

    def delete_file(self, key):
        self.deleted.append(key)
        return self.blobs.pop(key, None) is not None

    def generate_presigned_url(self, key, expiration=3600):
        return f"https://storage.test/{key}?expires={expiration}"


class FakeDispatcher:
    """Records notifications instead of queueing Celery tasks"""

    def __init__(self):
        self.accept = True
        self.signing_links = []
        self.reminders = []
        self.executed = []

    def signing_link_created(self, request_id):
        self.signing_links.append(request_id)
        return self.accept

    def signing_reminder(self, request_id):
        self.reminders.append(request_id)
        return self.accept

    def lease_fully_executed(self, lease_id):
        if not self.accept:
            return False
        self.executed.append(lease_id)
        return True


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def fakes(monkeypatch, storage, dispatcher):
    """Point every service singleton at the in-memory collaborators"""
    monkeypatch.setattr(native_signing_service, "storage", storage)
    monkeypatch.setattr(native_signing_service, "dispatcher", dispatcher)
    monkeypatch.setattr(signature_request_service, "dispatcher", dispatcher)
    monkeypatch.setattr(envelope_service, "storage", storage)
    monkeypatch.setattr(envelope_service, "dispatcher", dispatcher)
    monkeypatch.setattr(webhook_service, "dispatcher", dispatcher)
    monkeypatch.setattr(lease_services, "s3_utils", storage)
    monkeypatch.setattr(lease_services, "notification_dispatcher", dispatcher)
    return storage, dispatcher


@pytest.fixture
def client(db_session, fakes):

    # Override FastAPI's dependency to use the test database session
    def override_get_db():
        yield db_session

    fast_api_app.dependency_overrides[get_db] = override_get_db
    yield TestClient(fast_api_app)
    fast_api_app.dependency_overrides.clear()


def auth_headers(landlord_account_id: int = LANDLORD_ACCOUNT_ID) -> dict:
    return {"Authorization": f"Bearer {create_account_token(landlord_account_id, user_id=7)}"}


def make_lease(db, **overrides) -> Lease:
    values = {
        "tenant_id": 42,
        "landlord_account_id": LANDLORD_ACCOUNT_ID,
        "tenant_name": "Jordan Avery",
        "tenant_email": "jordan@example.com",
        "landlord_name": "Maple Street Holdings",
        "landlord_email": "owner@maplestreet.example.com",
        "property_label": "12 Maple Street, Unit 3B",
        "start_date": date(2026, 11, 1),
        "end_date": date(2027, 10, 31),
        "rent_amount": Decimal("1850.00"),
        "billing_day_of_month": 1,
    }
    values.update(overrides)
    lease = Lease(**values)
    db.add(lease)
    db.commit()
    db.refresh(lease)
    return lease


__all__ = [
    "client",
    "db_session",
    "dispatcher",
    "fakes",
    "storage",
    "auth_headers",
    "make_lease",
    "FakeDispatcher",
    "FakeStorage",
    "SIGNATURE_IMAGE",
    "LANDLORD_ACCOUNT_ID",
    "provider_connection_service",
]
