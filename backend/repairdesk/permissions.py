# Overview: Actor identity handed in by the identity provider, and role-based permission checks.

"""
The engine never authenticates. Every operation receives an Actor carrying an
opaque id and a coarse role supplied by the upstream identity provider, and
the engine only authorizes against that role.

Fail closed: a permission code that is not listed here is denied.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import PermissionDeniedError, ValidationError


ROLE_PRIVILEGED = "privileged"
ROLE_STANDARD = "standard"
VALID_ROLES = {ROLE_PRIVILEGED, ROLE_STANDARD}


@dataclass(frozen=True)
class Actor:
    id: str
    role: str = ROLE_STANDARD

    @property
    def is_privileged(self) -> bool:
        return self.role == ROLE_PRIVILEGED

    def __post_init__(self):
        if not self.id or not str(self.id).strip():
            raise ValidationError("actor id is required")
        if self.role not in VALID_ROLES:
            raise ValidationError(
                f"Invalid actor role '{self.role}'. Must be one of: {', '.join(sorted(VALID_ROLES))}"
            )


# Scheduled jobs (reminders, expiry) act as this actor.
SYSTEM_ACTOR = Actor(id="system", role=ROLE_PRIVILEGED)


# Each permission is defined as: (code, name, description, roles)
PERMISSION_DEFINITIONS = [
    (
        "MANAGE_ORDERS",
        "Manage Orders",
        "Create repair orders, change status, edit checklist and prices",
        {ROLE_STANDARD, ROLE_PRIVILEGED},
    ),
    (
        "MANAGE_ESTIMATES",
        "Manage Cost Estimates",
        "Create, send and record decisions on cost estimates",
        {ROLE_STANDARD, ROLE_PRIVILEGED},
    ),
    (
        "BOOK_PARTS",
        "Book Parts",
        "Book part usage against a repair order",
        {ROLE_STANDARD, ROLE_PRIVILEGED},
    ),
    (
        "APPROVE_PART_USAGE",
        "Approve Part Usage",
        "Approve or reject pending part usage",
        {ROLE_PRIVILEGED},
    ),
    (
        "REMOVE_APPROVED_PART_USAGE",
        "Remove Approved Part Usage",
        "Remove a part usage that was already approved",
        {ROLE_PRIVILEGED},
    ),
    (
        "RECEIVE_STOCK",
        "Receive Stock",
        "Book incoming stock and create parts",
        {ROLE_STANDARD, ROLE_PRIVILEGED},
    ),
    (
        "WRITE_OFF_STOCK",
        "Write Off Stock",
        "Take stock out manually or write it off",
        {ROLE_PRIVILEGED},
    ),
    (
        "COUNT_INVENTORY",
        "Count Inventory",
        "Start inventory sessions, enter counts and submit them",
        {ROLE_STANDARD, ROLE_PRIVILEGED},
    ),
    (
        "APPROVE_INVENTORY",
        "Approve Inventory",
        "Approve or reject submitted inventory sessions",
        {ROLE_PRIVILEGED},
    ),
]

_ROLES_BY_CODE = {code: roles for code, _name, _desc, roles in PERMISSION_DEFINITIONS}


def has_permission(actor: Actor, permission_code: str) -> bool:
    roles = _ROLES_BY_CODE.get(permission_code)
    if roles is None:
        return False
    return actor.role in roles


def require_permission(actor: Actor, permission_code: str) -> None:
    """Raise PermissionDeniedError unless the actor's role grants the permission."""
    if not has_permission(actor, permission_code):
        raise PermissionDeniedError(
            f"Actor {actor.id} ({actor.role}) lacks permission {permission_code}"
        )
