# medic-app/gateway.py
"""
The Access Gateway: the one entry point for every records operation.

Each operation resolves the caller's roles, checks them against the permission
table, and only then delegates to a registry or the record ledger. Nothing is
raised to the caller: every operation returns ``(value, error)`` where error is
None on success or an ``AccessError`` carrying its ``ErrorKind``.
"""

import functools
import logging
import time

from authorization import AuthorizationRegistry
from consent import ConsentRegistry
from errors import AccessError, Invalid, NotFound, Unauthorized, UploadFailed
from ledger import InMemoryLedger
from models import Attachment, normalize_identity, normalize_patient_id, normalize_record_id
from permissions import Action, Role, is_permitted, resolve_roles
from records import RecordLedger

logger = logging.getLogger(__name__)


def reported(func):
    """Turns a raising operation into one returning (value, error)."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs), None
        except AccessError as e:
            logger.info("%s failed: %s (%s)", func.__name__, e.kind.value, e.message)
            return None, e

    return wrapper


class AccessGateway:
    def __init__(self, authorization, consents, records, content_store=None, owner_can_write_without_consent=True):
        self.authorization = authorization
        self.consents = consents
        self.records = records
        self.content_store = content_store
        self.owner_can_write_without_consent = owner_can_write_without_consent

    @classmethod
    def create(cls, ledger=None, content_store=None, clock=time.time, owner_can_write_without_consent=True):
        """Builds a gateway with fresh components sharing one ledger."""
        ledger = ledger if ledger is not None else InMemoryLedger()
        return cls(
            AuthorizationRegistry(ledger),
            ConsentRegistry(ledger),
            RecordLedger(ledger, clock=clock),
            content_store=content_store,
            owner_can_write_without_consent=owner_can_write_without_consent,
        )

    @classmethod
    def restore(cls, ledger, content_store=None, clock=time.time, owner_can_write_without_consent=True):
        """Builds a gateway whose state is rebuilt by replaying the ledger's entries in order."""
        gateway = cls.create(ledger, content_store, clock, owner_can_write_without_consent)
        components = (gateway.authorization, gateway.consents, gateway.records)
        replayed = 0
        for entry in ledger.entries():
            handler = next((c for c in components if c.handles(entry.operation)), None)
            if handler is None:
                logger.warning("Skipping unknown ledger operation %r at entry %d", entry.operation, entry.sequence)
                continue
            handler.apply(entry.operation, entry.args)
            replayed += 1
        logger.info("Restored state from %d ledger entries", replayed)
        return gateway

    # --- Authorization checks ---

    def _roles(self, caller, patient_id=None):
        controller = self.records.controller_of(patient_id) if patient_id is not None else None
        return resolve_roles(
            caller,
            owner=self.authorization.get_owner(),
            is_doctor=self.authorization.is_doctor(caller),
            controller=controller,
        )

    def _require(self, action, caller, patient_id=None):
        roles = self._roles(caller, patient_id)
        consent = Role.DOCTOR in roles and patient_id is not None and self.consents.has_consent(patient_id, caller)
        if not is_permitted(action, roles, has_consent=consent, owner_override=self.owner_can_write_without_consent):
            target = f" on patient {patient_id}" if patient_id is not None else ""
            logger.warning("Access denied: %s may not %s%s", caller, action.value, target)
            raise Unauthorized(f"{caller} is not allowed to {action.value.replace('_', ' ')}{target}")
        return roles

    # --- Owner and doctors ---

    @reported
    def initialize(self, owner_identity):
        owner = normalize_identity(owner_identity)
        self.authorization.initialize(owner)
        return owner

    @reported
    def get_owner(self):
        owner = self.authorization.get_owner()
        if owner is None:
            raise NotFound("The records system has not been initialized")
        return owner

    @reported
    def authorize_doctor(self, caller_identity, target_identity):
        caller = normalize_identity(caller_identity)
        target = normalize_identity(target_identity)
        self._require(Action.AUTHORIZE_DOCTOR, caller)
        self.authorization.authorize_doctor(target)
        return target

    @reported
    def is_doctor(self, identity):
        return self.authorization.is_doctor(normalize_identity(identity))

    # --- Patients and consent ---

    @reported
    def register_patient(self, caller_identity, patient_id):
        caller = normalize_identity(caller_identity)
        patient_id = normalize_patient_id(patient_id)
        self.records.register_patient(caller, patient_id)
        return patient_id

    @reported
    def grant_consent(self, caller_identity, patient_id, doctor_identity):
        caller, patient_id, doctor = self._consent_args(caller_identity, patient_id, doctor_identity)
        self.consents.grant(patient_id, doctor)
        return self.consents.has_consent(patient_id, doctor)

    @reported
    def revoke_consent(self, caller_identity, patient_id, doctor_identity):
        caller, patient_id, doctor = self._consent_args(caller_identity, patient_id, doctor_identity)
        self.consents.revoke(patient_id, doctor)
        return self.consents.has_consent(patient_id, doctor)

    def _consent_args(self, caller_identity, patient_id, doctor_identity):
        caller = normalize_identity(caller_identity)
        patient_id = normalize_patient_id(patient_id)
        doctor = normalize_identity(doctor_identity)
        self.records.require_patient(patient_id)
        self._require(Action.MANAGE_CONSENT, caller, patient_id)
        return caller, patient_id, doctor

    @reported
    def has_consent(self, patient_id, doctor_identity):
        return self.consents.has_consent(normalize_patient_id(patient_id), normalize_identity(doctor_identity))

    @reported
    def consented_doctors(self, caller_identity, patient_id):
        caller = normalize_identity(caller_identity)
        patient_id = normalize_patient_id(patient_id)
        self.records.require_patient(patient_id)
        self._require(Action.VIEW_CONSENTS, caller, patient_id)
        return self.consents.consented_doctors(patient_id)

    @reported
    def accessible_patients(self, caller_identity, doctor_identity):
        """Patients who consented to ``doctor_identity``; visible to that doctor and the owner."""
        caller = normalize_identity(caller_identity)
        doctor = normalize_identity(doctor_identity)
        if caller != doctor:
            self._require(Action.VIEW_CONSENTS, caller)
        return self.consents.accessible_patients(doctor)

    # --- Records ---

    @reported
    def add_record(self, caller_identity, patient_id, clinical_fields):
        caller = normalize_identity(caller_identity)
        patient_id = normalize_patient_id(patient_id)
        self.records.require_patient(patient_id)
        self._require(Action.WRITE_RECORD, caller, patient_id)
        return self.records.add_record(patient_id, clinical_fields, author=caller)

    @reported
    def add_files_to_record(self, caller_identity, patient_id, record_id, attachments):
        caller, patient_id, record_id = self._attach_args(caller_identity, patient_id, record_id)
        self.records.add_files_to_record(patient_id, record_id, attachments)
        return len(self.records.require_record(patient_id, record_id).attachments)

    @reported
    def upload_and_attach(self, caller_identity, patient_id, record_id, files):
        """
        Uploads every file, then links them all to the record in one submission.

        ``files`` holds (blob, fileName, fileType) triples. If any upload fails
        nothing is linked; blobs already pinned stay orphaned, which is harmless.
        """
        files = list(files)
        caller, patient_id, record_id = self._attach_args(caller_identity, patient_id, record_id)
        if self.content_store is None:
            raise UploadFailed("No content store configured", reason="not_configured")
        if not files:
            raise Invalid("No files given")
        if any(not file_name or not str(file_name).strip() for _, file_name, _ in files):
            raise Invalid("Every file needs a name")

        attachments = []
        for blob, file_name, file_type in files:
            content_hash = self.content_store.upload(blob, file_name, file_type)
            attachments.append(Attachment.from_value((content_hash, file_name, file_type)))

        self.records.add_files_to_record(patient_id, record_id, attachments)
        return attachments

    def _attach_args(self, caller_identity, patient_id, record_id):
        caller = normalize_identity(caller_identity)
        patient_id = normalize_patient_id(patient_id)
        record_id = normalize_record_id(record_id)
        self.records.require_record(patient_id, record_id)
        self._require(Action.WRITE_RECORD, caller, patient_id)
        return caller, patient_id, record_id

    @reported
    def get_patient_records(self, caller_identity, patient_id):
        caller = normalize_identity(caller_identity)
        patient_id = normalize_patient_id(patient_id)
        self.records.require_patient(patient_id)
        self._require(Action.READ_RECORDS, caller, patient_id)
        return self.records.get_patient_records(patient_id)
