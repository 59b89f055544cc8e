"""Portal visibility rules.

Every read path builds one scope per actor and asks it for either a SQL
predicate (``clause``) or an in-memory decision (``allows``). Both forms are
derived from the same rule table, so a list query and a detail lookup can
never disagree about what an actor may see.

Records handed to ``allows`` carry the columns the list queries select:

* rfq: ``property_manager_id``, ``target_contractor_ids``
* quotation: ``created_by_id``, ``rfq_property_manager_id``, ``customer_email``, ``status``
* order / invoice: ``property_manager_id``, ``contractor_id``
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Tuple, Union

from facilityflow.contexts.procurement.infrastructure.repositories.user_repository import UserRepository
from facilityflow.errors import ForbiddenError, NotFoundError
from facilityflow.policies import FAMILY_ADMIN, FAMILY_CONTRACTOR, FAMILY_PROPERTY_MANAGER, role_family
from facilityflow.procurement.flow_policy import CANDIDATE_QUOTATION_STATUSES


ENTITIES = ("rfq", "quotation", "order", "invoice")
Clause = Tuple[str, List[Any]]

_PM_QUOTATION_STATUSES = tuple(sorted(CANDIDATE_QUOTATION_STATUSES))


def _marks(values: Iterable[Any]) -> str:
    return ",".join("?" for _ in values)


def _check_entity(entity: str) -> None:
    if entity not in ENTITIES:
        raise ValueError(f"unknown entity for visibility: {entity}")


def _as_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class PropertyManagerScope:
    actor_id: int
    email: str = ""
    kind: str = field(default=FAMILY_PROPERTY_MANAGER, init=False)

    def clause(self, entity: str, alias: str) -> Clause:
        _check_entity(entity)
        if entity == "quotation":
            return (
                f"{alias}.status IN ({_marks(_PM_QUOTATION_STATUSES)}) AND ("
                f"EXISTS (SELECT 1 FROM rfqs vr WHERE vr.rfq_number = {alias}.rfq_reference"
                f" AND vr.property_manager_id = ?) OR LOWER({alias}.customer_email) = ?)",
                [*_PM_QUOTATION_STATUSES, self.actor_id, self.email.lower()],
            )
        return f"{alias}.property_manager_id = ?", [self.actor_id]

    def allows(self, entity: str, record: Dict[str, Any]) -> bool:
        _check_entity(entity)
        if entity == "quotation":
            if record.get("status") not in CANDIDATE_QUOTATION_STATUSES:
                return False
            if _as_int(record.get("rfq_property_manager_id")) == self.actor_id:
                return True
            customer_email = str(record.get("customer_email") or "").lower()
            return bool(self.email) and customer_email == self.email.lower()
        return _as_int(record.get("property_manager_id")) == self.actor_id


@dataclass(frozen=True)
class ContractorScope:
    actor_id: int
    company_user_ids: FrozenSet[int]
    company_affiliation: str | None = None
    kind: str = field(default=FAMILY_CONTRACTOR, init=False)

    def _ids(self) -> List[int]:
        return sorted(self.company_user_ids)

    def clause(self, entity: str, alias: str) -> Clause:
        _check_entity(entity)
        ids = self._ids()
        if entity == "rfq":
            return (
                f"EXISTS (SELECT 1 FROM rfq_targets vt WHERE vt.rfq_id = {alias}.id"
                f" AND vt.contractor_user_id IN ({_marks(ids)}))",
                ids,
            )
        if entity == "quotation":
            return f"{alias}.created_by_id IN ({_marks(ids)})", ids
        return f"{alias}.contractor_id IN ({_marks(ids)})", ids

    def allows(self, entity: str, record: Dict[str, Any]) -> bool:
        _check_entity(entity)
        if entity == "rfq":
            targets = {_as_int(value) for value in record.get("target_contractor_ids") or []}
            return bool(targets & self.company_user_ids)
        if entity == "quotation":
            return _as_int(record.get("created_by_id")) in self.company_user_ids
        return _as_int(record.get("contractor_id")) in self.company_user_ids


@dataclass(frozen=True)
class AdminScope:
    excluded_user_ids: FrozenSet[int]
    kind: str = field(default=FAMILY_ADMIN, init=False)

    def clause(self, entity: str, alias: str) -> Clause:
        _check_entity(entity)
        ids = sorted(self.excluded_user_ids)
        if not ids:
            return "1 = 1", []
        if entity == "rfq":
            return (
                f"NOT EXISTS (SELECT 1 FROM rfq_targets vt WHERE vt.rfq_id = {alias}.id"
                f" AND vt.contractor_user_id IN ({_marks(ids)}))",
                ids,
            )
        column = "created_by_id" if entity == "quotation" else "contractor_id"
        return f"({alias}.{column} IS NULL OR {alias}.{column} NOT IN ({_marks(ids)}))", ids

    def allows(self, entity: str, record: Dict[str, Any]) -> bool:
        _check_entity(entity)
        if entity == "rfq":
            targets = {_as_int(value) for value in record.get("target_contractor_ids") or []}
            return not (targets & self.excluded_user_ids)
        column = "created_by_id" if entity == "quotation" else "contractor_id"
        return _as_int(record.get(column)) not in self.excluded_user_ids


@dataclass(frozen=True)
class ExternalScope:
    """Token holder: never sees anything through the list surface."""

    token_id: int
    rfq_id: int | None = None
    order_id: int | None = None
    kind: str = field(default="external", init=False)

    def clause(self, entity: str, alias: str) -> Clause:
        _check_entity(entity)
        return "1 = 0", []

    def allows(self, entity: str, record: Dict[str, Any]) -> bool:
        _check_entity(entity)
        record_id = _as_int(record.get("id"))
        if entity == "rfq":
            return self.rfq_id is not None and record_id == self.rfq_id
        if entity == "order":
            return self.order_id is not None and record_id == self.order_id
        return False


VisibilityScope = Union[PropertyManagerScope, ContractorScope, AdminScope, ExternalScope]


def partition(scope: VisibilityScope, entity: str, records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [record for record in records if scope.allows(entity, record)]


def require_visible(scope: VisibilityScope, entity: str, record: Dict[str, Any] | None, code: str) -> Dict[str, Any]:
    if record is None or not scope.allows(entity, record):
        raise NotFoundError(code=code, message_key=code, http_status=404, critical=False)
    return record


class VisibilityResolver:
    def __init__(self, users: UserRepository | None = None) -> None:
        self.users = users or UserRepository()

    def scope_for(self, db, actor) -> VisibilityScope:
        family = role_family(actor.role)
        if family == FAMILY_PROPERTY_MANAGER:
            return PropertyManagerScope(actor_id=int(actor.id), email=str(actor.email or ""))
        if family == FAMILY_CONTRACTOR:
            return self._contractor_scope(db, actor)
        if family == FAMILY_ADMIN:
            excluded = frozenset(self.users.contractor_user_ids(db))
            return AdminScope(excluded_user_ids=excluded)
        raise ForbiddenError(code="permission_denied", message_key="permission_denied", http_status=403, critical=False)

    def _contractor_scope(self, db, actor) -> ContractorScope:
        affiliation = str(actor.company_affiliation or "").strip()
        if not affiliation:
            user = self.users.get_by_id(db, int(actor.id))
            affiliation = str((user or {}).get("company_affiliation") or "").strip()
        if not affiliation:
            return ContractorScope(actor_id=int(actor.id), company_user_ids=frozenset({int(actor.id)}))
        ids = set(self.users.company_contractor_ids(db, affiliation))
        ids.add(int(actor.id))
        return ContractorScope(
            actor_id=int(actor.id),
            company_user_ids=frozenset(ids),
            company_affiliation=affiliation,
        )
