# medic-app/records.py

import dataclasses
import logging
import threading
import time

from errors import AlreadyExists, Invalid, NotFound
from ledger import LedgerBacked
from models import Attachment, ClinicalFields, Record

logger = logging.getLogger(__name__)


class RecordLedger(LedgerBacked):
    """
    Patients and their append-only medical records.

    Record IDs come from one counter shared by all patients, starting at 1, so an
    ID is never reused. Records never change after creation except for
    attachments being appended.
    """

    OPERATIONS = {
        "registerPatient": "_apply_register_patient",
        "addRecord": "_apply_add_record",
        "addFilesToRecord": "_apply_add_files",
    }

    def __init__(self, ledger, clock=time.time):
        super().__init__(ledger)
        self.clock = clock
        self._controllers = {}  # patient_id -> identity that registered it
        self._records = {}  # patient_id -> [Record] in append order
        self._positions = {}  # record_id -> (patient_id, index)
        self._next_record_id = 1
        self._lock = threading.Lock()

    # --- Patients ---

    def register_patient(self, controller_identity, patient_id):
        with self._lock:
            if patient_id in self._controllers:
                raise AlreadyExists(f"Patient {patient_id} is already registered")
            logger.info("Registering patient %s controlled by %s...", patient_id, controller_identity)
            self._commit("registerPatient", {"patientID": patient_id, "controller": controller_identity})

    def is_registered(self, patient_id):
        return patient_id in self._controllers

    def require_patient(self, patient_id):
        if patient_id not in self._controllers:
            raise NotFound(f"Patient {patient_id} is not registered")

    def controller_of(self, patient_id):
        return self._controllers.get(patient_id)

    # --- Records ---

    def add_record(self, patient_id, fields, author):
        """Stores a new record and returns its ID."""
        fields = ClinicalFields.from_payload(fields)
        with self._lock:
            self.require_patient(patient_id)
            record_id = self._next_record_id
            args = {
                "patientID": patient_id,
                "recordID": record_id,
                "timestamp": int(self.clock()),
                "author": author,
            }
            args.update(fields.to_dict())
            logger.info("Adding record %d for patient %s by %s...", record_id, patient_id, author)
            recorded = self._commit("addRecord", args)
        return recorded["recordID"]

    def require_record(self, patient_id, record_id):
        self.require_patient(patient_id)
        position = self._positions.get(record_id)
        if position is None or position[0] != patient_id:
            raise NotFound(f"Record {record_id} not found for patient {patient_id}")
        return self._records[patient_id][position[1]]

    def add_files_to_record(self, patient_id, record_id, attachments):
        if not isinstance(attachments, (list, tuple)):
            raise Invalid(f"Attachments must be a list, got {type(attachments).__name__}")
        attachments = [Attachment.from_value(item) for item in attachments]
        if not attachments:
            raise Invalid("No attachments given")
        with self._lock:
            self.require_record(patient_id, record_id)
            logger.info("Linking %d file(s) to record %d of patient %s...", len(attachments), record_id, patient_id)
            self._commit(
                "addFilesToRecord",
                {
                    "patientID": patient_id,
                    "recordID": record_id,
                    "attachments": [item.to_dict() for item in attachments],
                },
            )

    def get_patient_records(self, patient_id):
        self.require_patient(patient_id)
        return list(self._records[patient_id])

    # --- Ledger replay ---

    def _apply_register_patient(self, args):
        self._controllers[args["patientID"]] = args["controller"]
        self._records[args["patientID"]] = []

    def _apply_add_record(self, args):
        patient_id = args["patientID"]
        record = Record(
            recordID=args["recordID"],
            patientID=patient_id,
            fields=ClinicalFields.from_payload(args),
            timestamp=args["timestamp"],
            author=args["author"],
        )
        self._positions[record.recordID] = (patient_id, len(self._records[patient_id]))
        self._records[patient_id].append(record)
        self._next_record_id = max(self._next_record_id, record.recordID + 1)

    def _apply_add_files(self, args):
        patient_id, index = self._positions[args["recordID"]]
        record = self._records[patient_id][index]
        added = tuple(Attachment.from_value(item) for item in args["attachments"])
        self._records[patient_id][index] = dataclasses.replace(record, attachments=record.attachments + added)
