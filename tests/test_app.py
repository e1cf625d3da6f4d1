"""
Tests for the Flask JSON API.

Endpoints tested:
- POST /login, POST /logout
- GET /api/status, GET /api/owner
- POST /api/doctors, GET /api/doctors/<identity>
- POST /api/patients, consent routes under /api/patients/<pid>/consents
- record and file routes under /api/patients/<pid>/records
"""
import io

import pytest
from eth_account import Account

from conftest import CLINICAL, DOCTOR, OWNER, PATIENT, login


class TestSession:
    def test_routes_require_login(self, client):
        response = client.post("/api/patients", json={"patient_id": "42"})
        assert response.status_code == 401

    def test_login_with_private_key(self, client):
        key = "0x" + "22" * 32
        response = client.post("/login", json={"private_key": key[2:]})
        assert response.status_code == 200
        assert response.get_json()["account"] == Account.from_key(key).address

    def test_bad_private_key(self, client):
        response = client.post("/login", json={"private_key": "not-a-key"})
        assert response.status_code == 400

    def test_logout(self, client):
        login(client, PATIENT)
        client.post("/logout")
        assert client.get("/api/status").status_code == 401

    def test_status(self, client):
        login(client, OWNER)
        body = client.get("/api/status").get_json()
        assert body == {"account": OWNER, "owner": OWNER, "is_owner": True, "is_doctor": False}


class TestDoctorsApi:
    def test_owner_authorizes_doctor(self, client):
        login(client, OWNER)
        response = client.post("/api/doctors", json={"doctor": DOCTOR})
        assert response.status_code == 200
        assert client.get(f"/api/doctors/{DOCTOR}").get_json()["is_doctor"] is True

    def test_authorize_my_account(self, client):
        login(client, OWNER)
        assert client.post("/api/doctors", json={}).get_json() == {"doctor": OWNER}

    def test_non_owner_gets_403(self, client):
        login(client, DOCTOR)
        response = client.post("/api/doctors", json={"doctor": DOCTOR})
        assert response.status_code == 403
        assert response.get_json()["error"] == "Unauthorized"

    def test_owner(self, client):
        assert client.get("/api/owner").get_json() == {"owner": OWNER}


class TestPatientsApi:
    def test_register_twice(self, client):
        login(client, PATIENT)
        assert client.post("/api/patients", json={"patient_id": 42}).status_code == 201
        response = client.post("/api/patients", json={"patient_id": "42"})
        assert response.status_code == 409
        assert response.get_json()["error"] == "AlreadyExists"

    def test_consent_flow(self, client, doctor, patient):
        login(client, PATIENT)
        url = f"/api/patients/{patient}/consents"
        assert client.post(url, json={"doctor": doctor}).get_json()["granted"] is True
        assert client.get(f"{url}/{doctor}").get_json()["granted"] is True
        assert client.get(url).get_json() == {"doctors": [DOCTOR]}

        assert client.delete(f"{url}/{doctor}").get_json()["granted"] is False
        assert client.get(f"{url}/{doctor}").get_json()["granted"] is False

    def test_consent_for_unknown_patient(self, client, doctor):
        login(client, PATIENT)
        response = client.post("/api/patients/999/consents", json={"doctor": doctor})
        assert response.status_code == 404

    def test_body_must_be_an_object(self, client):
        login(client, PATIENT)
        response = client.post("/api/patients", json=["42"])
        assert response.status_code == 400
        assert response.get_json()["error"] == "Invalid"


class TestConsentListingsApi:
    def test_require_login(self, client, doctor, consented):
        assert client.get(f"/api/patients/{consented}/consents").status_code == 401
        assert client.get(f"/api/doctors/{doctor}/patients").status_code == 401

    def test_doctor_sees_own_patients(self, client, doctor, consented):
        login(client, doctor)
        assert client.get(f"/api/doctors/{doctor}/patients").get_json() == {"patients": [consented]}
        assert client.get(f"/api/patients/{consented}/consents").status_code == 403

    def test_strangers_get_403(self, client, doctor, consented):
        login(client, "stranger")
        assert client.get(f"/api/doctors/{doctor}/patients").status_code == 403
        assert client.get(f"/api/patients/{consented}/consents").status_code == 403

    def test_owner_sees_both(self, client, doctor, consented):
        login(client, OWNER)
        assert client.get(f"/api/doctors/{doctor}/patients").get_json() == {"patients": [consented]}
        assert client.get(f"/api/patients/{consented}/consents").get_json() == {"doctors": [DOCTOR]}


class TestRecordsApi:
    def test_add_and_fetch_record(self, client, doctor, consented):
        login(client, doctor)
        response = client.post(f"/api/patients/{consented}/records", json=CLINICAL)
        assert response.status_code == 201
        assert response.get_json() == {"recordID": 1}

        records = client.get(f"/api/patients/{consented}/records").get_json()["records"]
        assert len(records) == 1
        assert records[0]["recordID"] == 1
        assert records[0]["diagnosis"] == "Migraine"
        assert records[0]["attachments"] == []

    def test_missing_fields(self, client, doctor, consented):
        login(client, doctor)
        response = client.post(f"/api/patients/{consented}/records", json={"patientName": "Jane"})
        assert response.status_code == 400
        assert response.get_json()["error"] == "Invalid"

    def test_without_consent(self, client, doctor, patient):
        login(client, doctor)
        assert client.post(f"/api/patients/{patient}/records", json=CLINICAL).status_code == 403
        assert client.get(f"/api/patients/{patient}/records").status_code == 403

    def test_unknown_patient(self, client, doctor):
        login(client, doctor)
        assert client.post("/api/patients/999/records", json=CLINICAL).status_code == 404


class TestFilesApi:
    @pytest.fixture
    def record_url(self, client, doctor, consented):
        login(client, doctor)
        client.post(f"/api/patients/{consented}/records", json=CLINICAL)
        return f"/api/patients/{consented}/records/1"

    def test_multipart_upload(self, client, content_store, record_url):
        data = {"files": [(io.BytesIO(b"%PDF-1.4"), "x.pdf"), (io.BytesIO(b"png"), "scan.png")]}
        response = client.post(f"{record_url}/files", data=data, content_type="multipart/form-data")
        assert response.status_code == 200
        attachments = response.get_json()["attachments"]
        assert [a["fileName"] for a in attachments] == ["x.pdf", "scan.png"]
        assert attachments[0]["url"] == f"https://gateway.example/ipfs/{attachments[0]['contentHash']}"
        assert len(content_store.uploads) == 2

        records = client.get(record_url.rsplit("/", 1)[0]).get_json()["records"]
        assert [a["fileName"] for a in records[0]["attachments"]] == ["x.pdf", "scan.png"]

    def test_disallowed_extension(self, client, content_store, record_url):
        data = {"files": [(io.BytesIO(b"MZ"), "tool.exe")]}
        response = client.post(f"{record_url}/files", data=data, content_type="multipart/form-data")
        assert response.status_code == 400
        assert content_store.uploads == []

    def test_failed_upload_is_502(self, client, gateway, record_url):
        gateway.content_store.failing.add("x.pdf")
        data = {"files": [(io.BytesIO(b"%PDF"), "x.pdf")]}
        response = client.post(f"{record_url}/files", data=data, content_type="multipart/form-data")
        assert response.status_code == 502
        assert response.get_json()["error"] == "UploadFailed"
        assert response.get_json()["status"] == 500

    def test_link_pinned_files(self, client, record_url):
        attachments = [{"contentHash": "Qm123", "fileName": "x.pdf", "fileType": "application/pdf"}]
        response = client.post(f"{record_url}/files", json={"attachments": attachments})
        assert response.get_json() == {"recordID": 1, "attachments": 1}

    def test_unknown_record(self, client, consented, doctor):
        login(client, doctor)
        response = client.post(
            f"/api/patients/{consented}/records/9/files", json={"attachments": [["Qm1", "a.pdf", "application/pdf"]]}
        )
        assert response.status_code == 404

    def test_attachments_must_be_a_list(self, client, record_url):
        response = client.post(f"{record_url}/files", json={"attachments": 5})
        assert response.status_code == 400
        assert response.get_json()["error"] == "Invalid"
