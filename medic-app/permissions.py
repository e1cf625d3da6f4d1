# medic-app/permissions.py
"""
Who may do what.

A caller's roles are resolved once per call, then looked up in ``PERMISSIONS``.
Each entry says under which condition a role is allowed the action.
"""

from enum import Enum


class Role(str, Enum):
    OWNER = "owner"
    DOCTOR = "doctor"
    PATIENT_SELF = "patient_self"
    OTHER = "other"


class Action(str, Enum):
    AUTHORIZE_DOCTOR = "authorize_doctor"
    MANAGE_CONSENT = "manage_consent"
    WRITE_RECORD = "write_record"
    READ_RECORDS = "read_records"
    VIEW_CONSENTS = "view_consents"


class Rule(str, Enum):
    ALWAYS = "always"
    WITH_CONSENT = "with_consent"
    OWNER_OVERRIDE = "owner_override"


PERMISSIONS = {
    Action.AUTHORIZE_DOCTOR: {Role.OWNER: Rule.ALWAYS},
    Action.MANAGE_CONSENT: {Role.PATIENT_SELF: Rule.ALWAYS},
    Action.WRITE_RECORD: {
        Role.OWNER: Rule.OWNER_OVERRIDE,
        Role.DOCTOR: Rule.WITH_CONSENT,
    },
    Action.READ_RECORDS: {
        Role.OWNER: Rule.ALWAYS,
        Role.PATIENT_SELF: Rule.ALWAYS,
        Role.DOCTOR: Rule.WITH_CONSENT,
    },
    Action.VIEW_CONSENTS: {
        Role.OWNER: Rule.ALWAYS,
        Role.PATIENT_SELF: Rule.ALWAYS,
    },
}


def resolve_roles(caller, owner, is_doctor, controller=None):
    """Returns the frozenset of roles ``caller`` holds, relative to one patient when ``controller`` is given."""
    roles = set()
    if owner is not None and caller == owner:
        roles.add(Role.OWNER)
    if is_doctor:
        roles.add(Role.DOCTOR)
    if controller is not None and caller == controller:
        roles.add(Role.PATIENT_SELF)
    if not roles:
        roles.add(Role.OTHER)
    return frozenset(roles)


def is_permitted(action, roles, has_consent=False, owner_override=True):
    rules = PERMISSIONS[action]
    for role in roles:
        rule = rules.get(role)
        if rule is Rule.ALWAYS:
            return True
        if rule is Rule.WITH_CONSENT and has_consent:
            return True
        if rule is Rule.OWNER_OVERRIDE and owner_override:
            return True
    return False
