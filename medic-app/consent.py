# medic-app/consent.py

import logging

from ledger import LedgerBacked

logger = logging.getLogger(__name__)


class ConsentRegistry(LedgerBacked):
    """
    Consent edges from a patient to a doctor.

    An absent edge means no consent. Edges keep the position of their first
    grant, so listings stay stable across revoke/grant cycles.
    """

    OPERATIONS = {
        "grantConsent": "_apply_grant",
        "revokeConsent": "_apply_revoke",
    }

    def __init__(self, ledger):
        super().__init__(ledger)
        self._edges = {}  # (patient_id, doctor) -> granted

    def grant(self, patient_id, doctor_identity):
        """Returns False when consent was already granted (nothing is submitted)."""
        if self._edges.get((patient_id, doctor_identity)):
            return False
        logger.info("Granting consent from patient %s to doctor %s...", patient_id, doctor_identity)
        self._commit("grantConsent", {"patientID": patient_id, "doctor": doctor_identity})
        return True

    def revoke(self, patient_id, doctor_identity):
        """Returns False when there was no active consent to revoke."""
        if not self._edges.get((patient_id, doctor_identity)):
            return False
        logger.info("Revoking consent of doctor %s for patient %s...", doctor_identity, patient_id)
        self._commit("revokeConsent", {"patientID": patient_id, "doctor": doctor_identity})
        return True

    def has_consent(self, patient_id, doctor_identity):
        return self._edges.get((patient_id, doctor_identity), False)

    def consented_doctors(self, patient_id):
        return [doctor for (patient, doctor), granted in self._edges.items() if granted and patient == patient_id]

    def accessible_patients(self, doctor_identity):
        return [patient for (patient, doctor), granted in self._edges.items() if granted and doctor == doctor_identity]

    def _apply_grant(self, args):
        self._edges[(args["patientID"], args["doctor"])] = True

    def _apply_revoke(self, args):
        self._edges[(args["patientID"], args["doctor"])] = False
