"""
Shared fixtures: an in-memory ledger, a gateway initialized with an owner, a
fake content store, and a Flask test client wired to the same gateway.
"""
import hashlib

import pytest

from app import create_app
from config import Config
from errors import UploadFailed
from gateway import AccessGateway
from ledger import InMemoryLedger, SubmitResult

OWNER = "owner"
DOCTOR = "D1"
OTHER_DOCTOR = "D2"
PATIENT = "patient-42"
FIXED_TIME = 1700000000

CLINICAL = {
    "patientName": "Jane Doe",
    "gender": "F",
    "age": 34,
    "bloodGroup": "O+",
    "diagnosis": "Migraine",
    "treatment": "Rest and hydration",
    "doctorName": "Dr. One",
}


class FakeContentStore:
    """Content store double: hashes blobs locally, fails for names listed in ``failing``."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.uploads = []

    def upload(self, blob, file_name="file", file_type=None):
        if file_name in self.failing:
            raise UploadFailed("Pinata returned 500", status_code=500, reason="Internal Server Error")
        content_hash = "Qm" + hashlib.sha256(blob).hexdigest()[:44]
        self.uploads.append((content_hash, file_name))
        return content_hash

    def resolve(self, content_hash):
        return f"https://gateway.example/ipfs/{content_hash}"


class SwitchableLedger(InMemoryLedger):
    """In-memory ledger that rejects every submission while ``rejecting`` is set."""

    def __init__(self):
        super().__init__()
        self.rejecting = False

    def submit(self, operation, args):
        if self.rejecting:
            return SubmitResult(False, error="execution reverted")
        return super().submit(operation, args)


class AppTestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    ALLOW_DEV_LOGIN = True
    LOG_LEVEL = "WARNING"


@pytest.fixture
def ledger():
    return SwitchableLedger()


@pytest.fixture
def content_store():
    return FakeContentStore()


@pytest.fixture
def gateway(ledger, content_store):
    gw = AccessGateway.create(ledger, content_store=content_store, clock=lambda: FIXED_TIME)
    _, error = gw.initialize(OWNER)
    assert error is None
    return gw


@pytest.fixture
def doctor(gateway):
    _, error = gateway.authorize_doctor(OWNER, DOCTOR)
    assert error is None
    return DOCTOR


@pytest.fixture
def patient(gateway):
    _, error = gateway.register_patient(PATIENT, "42")
    assert error is None
    return "42"


@pytest.fixture
def consented(gateway, doctor, patient):
    _, error = gateway.grant_consent(PATIENT, patient, doctor)
    assert error is None
    return patient


@pytest.fixture
def app(gateway):
    return create_app(AppTestConfig, gateway=gateway)


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, account):
    response = client.post("/login", json={"account": account})
    assert response.status_code == 200
    return response
