# medic-app/ledger.py
"""
The abstract ledger: a durable, totally ordered, append-only log of accepted
operations. The registries submit every state transition here before applying
it, so replaying ``entries()`` in order rebuilds the same state.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from web3 import Web3

from errors import LedgerRejected
from utils import send_transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    accepted: bool
    result: Any = None
    error: Optional[str] = None
    # The args as the ledger recorded them, when it filled in values of its own
    args: Optional[dict] = None


@dataclass(frozen=True)
class LedgerEntry:
    sequence: int
    operation: str
    args: dict = field(default_factory=dict)


class Ledger:
    """Interface every ledger binding implements."""

    def submit(self, operation, args):
        raise NotImplementedError

    def entries(self):
        raise NotImplementedError


class InMemoryLedger(Ledger):
    """Ordered in-process log. Used for tests and for running without a chain."""

    def __init__(self):
        self._entries = []
        self._lock = threading.Lock()

    def submit(self, operation, args):
        with self._lock:
            entry = LedgerEntry(len(self._entries) + 1, operation, dict(args))
            self._store(entry)
        logger.debug("Ledger entry %d accepted: %s", entry.sequence, operation)
        return SubmitResult(accepted=True, result=entry.sequence)

    def _store(self, entry):
        self._entries.append(entry)

    def entries(self):
        with self._lock:
            return list(self._entries)


class FileJournal(InMemoryLedger):
    """
    Ordered log mirrored to a JSON-lines file and reloaded on start.

    Each line holds one entry; a line is written before the entry counts as
    accepted, so a restart replays exactly what was accepted.
    """

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            with self.path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    if line.strip():
                        data = json.loads(line)
                        self._entries.append(LedgerEntry(data["sequence"], data["operation"], data["args"]))
            logger.info("Loaded %d journal entries from %s", len(self._entries), self.path)

    def _store(self, entry):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps({"sequence": entry.sequence, "operation": entry.operation, "args": entry.args})
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
        super()._store(entry)


# Contract function name -> positional arguments taken from the entry args.
# Operations absent here (the owner is fixed by the contract constructor) are journaled locally only.
CONTRACT_CALLS = {
    "authorizeDoctor": ("doctor",),
    "registerPatient": ("patientID",),
    "grantConsent": ("patientID", "doctor"),
    "revokeConsent": ("patientID", "doctor"),
    "addRecord": (
        "patientID",
        "patientName",
        "gender",
        "age",
        "bloodGroup",
        "diagnosis",
        "treatment",
        "doctorName",
    ),
    "addFilesToRecord": ("patientID", "recordID", "contentHashes", "fileNames", "fileTypes"),
}


class ContractLedger(Ledger):
    """
    Binds the log to the HealthcareRecords contract.

    Every transaction is signed by the server account (registrar pattern), so the
    contract sees a single submitter; per-caller checks happen in the gateway
    before anything reaches this point.

    The contract keeps no replayable history, so every accepted submission is
    also written to ``journal`` (a ``FileJournal`` in production), which is what
    ``entries()`` replays after a restart.
    """

    def __init__(self, w3, contract, private_key, journal, receipt_timeout=180):
        self.w3 = w3
        self.contract = contract
        self.private_key = private_key
        self.receipt_timeout = receipt_timeout
        self._journal = journal

    def submit(self, operation, args):
        call_args = CONTRACT_CALLS.get(operation)
        if call_args is None:
            return self._journal.submit(operation, args)

        values = [self._to_contract_value(args, name) for name in call_args]
        try:
            function_call = getattr(self.contract.functions, operation)(*values)
        except AttributeError:
            return SubmitResult(False, error=f"Contract function '{operation}' not found. Is the right contract deployed?")

        logger.info("Submitting %s to contract %s...", operation, self.contract.address)
        receipt, error = send_transaction(self.w3, function_call, self.private_key, timeout=self.receipt_timeout)
        if receipt is None:
            logger.warning("Ledger rejected %s: %s", operation, error)
            return SubmitResult(False, error=error)

        recorded = dict(args)
        if operation == "addRecord":
            # The contract numbers records itself; its ID wins over the proposed one
            recorded["recordID"] = self._assigned_record_id(args["patientID"], args["recordID"])
        self._journal.submit(operation, recorded)
        return SubmitResult(True, result=self.w3.to_hex(receipt.transactionHash), args=recorded)

    def entries(self):
        """Journaled entries, in submission order."""
        return self._journal.entries()

    def _assigned_record_id(self, patient_id, proposed):
        """Reads back the ID the contract gave the newest record of ``patient_id``."""
        try:
            sender = self.w3.eth.account.from_key(self.private_key).address
            records = self.contract.functions.getPatientRecords(self._patient_key(patient_id)).call({"from": sender})
            last = records[-1]
            return int(last["recordID"] if isinstance(last, dict) else last.recordID)
        except Exception:
            logger.exception("Could not read back the record ID for patient %s, keeping %d", patient_id, proposed)
            return proposed

    @staticmethod
    def _patient_key(patient_id):
        # The contract keys patients by uint
        return int(patient_id) if patient_id.isdigit() else patient_id

    @classmethod
    def _to_contract_value(cls, args, name):
        if name == "patientID":
            return cls._patient_key(args["patientID"])
        if name == "doctor":
            return Web3.to_checksum_address(args["doctor"]) if Web3.is_address(args["doctor"]) else args["doctor"]
        if name in ("contentHashes", "fileNames", "fileTypes"):
            key = {"contentHashes": "contentHash", "fileNames": "fileName", "fileTypes": "fileType"}[name]
            return [item[key] for item in args["attachments"]]
        return args[name]


class LedgerBacked:
    """
    Base for components whose state is derived from ledger entries.

    ``OPERATIONS`` maps an operation name to the method applying it. Mutations go
    through ``_commit``: submit first, apply only once the ledger accepted.
    """

    OPERATIONS = {}

    def __init__(self, ledger):
        self.ledger = ledger

    def handles(self, operation):
        return operation in self.OPERATIONS

    def apply(self, operation, args):
        getattr(self, self.OPERATIONS[operation])(args)

    def _commit(self, operation, args):
        """Submits, then applies the args as the ledger recorded them and returns those."""
        outcome = self.ledger.submit(operation, args)
        if not outcome.accepted:
            raise LedgerRejected(f"Ledger rejected {operation}: {outcome.error or 'unknown reason'}")
        recorded = outcome.args if outcome.args is not None else args
        self.apply(operation, recorded)
        return recorded
