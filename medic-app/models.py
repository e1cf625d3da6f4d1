# medic-app/models.py
"""Value types for identities, clinical payloads, records and attachments."""

from dataclasses import dataclass, field

from web3 import Web3

from errors import Invalid

CLINICAL_FIELDS = (
    "patientName",
    "gender",
    "age",
    "bloodGroup",
    "diagnosis",
    "treatment",
    "doctorName",
)
MAX_AGE = 150
DEFAULT_FILE_TYPE = "application/octet-stream"


# --- Keys ---

def normalize_identity(identity):
    """
    Returns the canonical form of an account identity.

    Ethereum addresses are compared case-insensitively by the front end, so they
    are folded to their checksum form. Anything else is an opaque key.
    """
    if identity is None:
        raise Invalid("Identity is required")
    value = str(identity).strip()
    if not value:
        raise Invalid("Identity is required")
    if Web3.is_address(value):
        return Web3.to_checksum_address(value)
    return value


def normalize_patient_id(patient_id):
    # The form posts numbers, API callers may post strings: 42 and "42" are one patient
    if patient_id is None or isinstance(patient_id, bool):
        raise Invalid("Patient ID is required")
    value = str(patient_id).strip()
    if not value:
        raise Invalid("Patient ID is required")
    return value


def normalize_record_id(record_id):
    if isinstance(record_id, bool) or (isinstance(record_id, float) and not record_id.is_integer()):
        raise Invalid(f"Record ID must be an integer, got {record_id!r}")
    try:
        value = int(record_id)
    except (TypeError, ValueError):
        raise Invalid(f"Record ID must be an integer, got {record_id!r}")
    if value < 1:
        raise Invalid(f"Record ID must be positive, got {value}")
    return value


# --- Payloads ---

@dataclass(frozen=True)
class ClinicalFields:
    patientName: str
    gender: str
    age: int
    bloodGroup: str
    diagnosis: str
    treatment: str
    doctorName: str

    @classmethod
    def from_payload(cls, payload):
        """Validates a clinical payload. Every field is required, age must be a whole number."""
        if isinstance(payload, cls):
            return payload
        if not isinstance(payload, dict):
            raise Invalid("Clinical fields must be an object")

        missing = [name for name in CLINICAL_FIELDS if _blank(payload.get(name))]
        if missing:
            raise Invalid(f"Please fill all fields: missing {', '.join(missing)}")

        age = _parse_age(payload["age"])
        values = {name: str(payload[name]).strip() for name in CLINICAL_FIELDS if name != "age"}
        return cls(age=age, **values)

    def to_dict(self):
        return {name: getattr(self, name) for name in CLINICAL_FIELDS}


def _blank(value):
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_age(value):
    if isinstance(value, bool):
        raise Invalid("Age must be a whole number")
    try:
        age = int(str(value).strip())
    except ValueError:
        raise Invalid(f"Age must be a whole number, got {value!r}")
    if age < 0 or age > MAX_AGE:
        raise Invalid(f"Age must be between 0 and {MAX_AGE}, got {age}")
    return age


@dataclass(frozen=True)
class Attachment:
    contentHash: str
    fileName: str
    fileType: str = DEFAULT_FILE_TYPE

    @classmethod
    def from_value(cls, value):
        """Accepts an Attachment, a (hash, name, type) sequence, or a dict with those keys."""
        if isinstance(value, cls):
            return value
        if isinstance(value, dict):
            content_hash = value.get("contentHash")
            file_name = value.get("fileName")
            file_type = value.get("fileType")
        elif isinstance(value, (list, tuple)) and len(value) in (2, 3):
            content_hash, file_name = value[0], value[1]
            file_type = value[2] if len(value) == 3 else None
        else:
            raise Invalid(f"Unrecognised attachment: {value!r}")

        if _blank(content_hash):
            raise Invalid("Attachment content hash is required")
        if _blank(file_name):
            raise Invalid("Attachment file name is required")
        file_type = DEFAULT_FILE_TYPE if _blank(file_type) else str(file_type).strip()
        return cls(str(content_hash).strip(), str(file_name).strip(), file_type)

    def to_dict(self):
        return {"contentHash": self.contentHash, "fileName": self.fileName, "fileType": self.fileType}


# --- Stored entities ---

@dataclass(frozen=True)
class Record:
    recordID: int
    patientID: str
    fields: ClinicalFields
    timestamp: int
    author: str
    attachments: tuple = field(default_factory=tuple)

    def __getattr__(self, name):
        # record.diagnosis etc. read through to the clinical fields
        if name in CLINICAL_FIELDS:
            return getattr(self.fields, name)
        raise AttributeError(name)

    def to_dict(self, resolve=None):
        data = {"recordID": self.recordID, "patientID": self.patientID}
        data.update(self.fields.to_dict())
        data["timestamp"] = self.timestamp
        data["author"] = self.author
        attachments = []
        for attachment in self.attachments:
            item = attachment.to_dict()
            if resolve is not None:
                item["url"] = resolve(attachment.contentHash)
            attachments.append(item)
        data["attachments"] = attachments
        return data
