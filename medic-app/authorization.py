# medic-app/authorization.py

import logging

from errors import AlreadyInitialized
from ledger import LedgerBacked

logger = logging.getLogger(__name__)


class AuthorizationRegistry(LedgerBacked):
    """The single owner and the set of doctors the owner has authorized."""

    OPERATIONS = {
        "initialize": "_apply_initialize",
        "authorizeDoctor": "_apply_authorize_doctor",
    }

    def __init__(self, ledger):
        super().__init__(ledger)
        self.owner = None
        self._doctors = {}  # identity -> True, in authorization order

    def initialize(self, owner_identity):
        if self.owner is not None:
            raise AlreadyInitialized(f"Owner is already set to {self.owner}")
        logger.info("Initializing records system with owner %s", owner_identity)
        self._commit("initialize", {"owner": owner_identity})

    def authorize_doctor(self, target_identity):
        """Adds a doctor. Returns False when the identity was already authorized."""
        if target_identity in self._doctors:
            return False
        logger.info("Authorizing doctor %s...", target_identity)
        self._commit("authorizeDoctor", {"doctor": target_identity})
        return True

    def is_doctor(self, identity):
        return identity in self._doctors

    def get_owner(self):
        return self.owner

    def doctors(self):
        return list(self._doctors)

    def _apply_initialize(self, args):
        self.owner = args["owner"]

    def _apply_authorize_doctor(self, args):
        self._doctors[args["doctor"]] = True
