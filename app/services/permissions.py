# app/services/permissions.py
# Permisos por rol: admin ve/edita toda la clínica, el profesional solo lo suyo.
from typing import Literal

from app.models.user import RoleEnum

Scope = Literal["own", "clinic"]

Resource = Literal[
    "appointment", "recurrence", "patient", "professional",
    "availability", "therapy-group", "audit-log", "notification",
]
Action = Literal["create", "read", "update", "delete", "list"]

_ALL: tuple[Action, ...] = ("create", "read", "update", "delete", "list")
_READ: tuple[Action, ...] = ("read", "list")

ROLE_PERMISSIONS: dict[RoleEnum, dict[str, dict[str, Scope]]] = {
    RoleEnum.admin: {
        "appointment": {a: "clinic" for a in _ALL},
        "recurrence": {a: "clinic" for a in _ALL},
        "patient": {a: "clinic" for a in _ALL},
        "professional": {a: "clinic" for a in _ALL},
        "availability": {a: "clinic" for a in _ALL},
        "therapy-group": {a: "clinic" for a in _ALL},
        "audit-log": {a: "clinic" for a in _READ},
        "notification": {a: "clinic" for a in _READ},
    },
    RoleEnum.professional: {
        "appointment": {a: "own" for a in _ALL},
        "recurrence": {a: "own" for a in _ALL},
        # pacientes y colegas se leen a nivel clínica (para agendar)
        "patient": {"create": "clinic", "read": "clinic", "list": "clinic", "update": "clinic"},
        "professional": {a: "clinic" for a in _READ} | {"update": "own"},
        "availability": {a: "own" for a in _ALL},
        "therapy-group": {a: "own" for a in _ALL},
        "notification": {a: "own" for a in _READ},
    },
}


def resolve_scope(role: RoleEnum, resource: Resource, action: Action) -> Scope | None:
    """None = sin permiso."""
    return ROLE_PERMISSIONS.get(role, {}).get(resource, {}).get(action)


def can_access_owned(scope: Scope | None, my_professional_id: str | None, owner_id: str | None) -> bool:
    if scope == "clinic":
        return True
    if scope == "own":
        return bool(my_professional_id) and my_professional_id == owner_id
    return False
