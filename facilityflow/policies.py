from __future__ import annotations

from typing import Iterable, Set

from facilityflow.errors import ForbiddenError


PROPERTY_MANAGER = "PROPERTY_MANAGER"
CONTRACTOR = "CONTRACTOR"
CONTRACTOR_JUNIOR_MANAGER = "CONTRACTOR_JUNIOR_MANAGER"
CONTRACTOR_SENIOR_MANAGER = "CONTRACTOR_SENIOR_MANAGER"
ADMIN = "ADMIN"
JUNIOR_ADMIN = "JUNIOR_ADMIN"
SENIOR_ADMIN = "SENIOR_ADMIN"

PROPERTY_MANAGER_ROLES: Set[str] = {PROPERTY_MANAGER}
CONTRACTOR_ROLES: Set[str] = {CONTRACTOR, CONTRACTOR_JUNIOR_MANAGER, CONTRACTOR_SENIOR_MANAGER}
ADMIN_ROLES: Set[str] = {ADMIN, JUNIOR_ADMIN, SENIOR_ADMIN}
VALID_ROLES: Set[str] = PROPERTY_MANAGER_ROLES | CONTRACTOR_ROLES | ADMIN_ROLES

FAMILY_PROPERTY_MANAGER = "property_manager"
FAMILY_CONTRACTOR = "contractor"
FAMILY_ADMIN = "admin"


def normalize_role(role: str | None, default: str = "") -> str:
    normalized = str(role or "").strip().upper()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def role_family(role: str | None) -> str | None:
    normalized = normalize_role(role)
    if normalized in PROPERTY_MANAGER_ROLES:
        return FAMILY_PROPERTY_MANAGER
    if normalized in CONTRACTOR_ROLES:
        return FAMILY_CONTRACTOR
    if normalized in ADMIN_ROLES:
        return FAMILY_ADMIN
    return None


def is_property_manager(role: str | None) -> bool:
    return role_family(role) == FAMILY_PROPERTY_MANAGER


def is_contractor(role: str | None) -> bool:
    return role_family(role) == FAMILY_CONTRACTOR


def is_admin(role: str | None) -> bool:
    return role_family(role) == FAMILY_ADMIN


def expand_families(families: Iterable[str]) -> Set[str]:
    roles: Set[str] = set()
    for family in families:
        if family == FAMILY_PROPERTY_MANAGER:
            roles |= PROPERTY_MANAGER_ROLES
        elif family == FAMILY_CONTRACTOR:
            roles |= CONTRACTOR_ROLES
        elif family == FAMILY_ADMIN:
            roles |= ADMIN_ROLES
        else:
            normalized = normalize_role(family)
            if normalized:
                roles.add(normalized)
    return roles


def has_any_role(role: str | None, allowed: Iterable[str]) -> bool:
    allowed_roles = expand_families(allowed)
    return bool(allowed_roles) and normalize_role(role) in allowed_roles


def require_roles(actor, *allowed: str) -> str:
    """Return the actor's role or raise ``ForbiddenError``.

    ``allowed`` accepts concrete roles as well as the family names
    ``property_manager``, ``contractor`` and ``admin``.
    """
    role = normalize_role(getattr(actor, "role", None))
    if role and has_any_role(role, allowed):
        return role
    raise ForbiddenError(
        code="permission_denied",
        message_key="permission_denied",
        http_status=403,
        critical=False,
        details=f"role {role or 'unknown'} not in {sorted(expand_families(allowed))}",
    )
