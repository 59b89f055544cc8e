from __future__ import annotations

from flask import current_app, g, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from facilityflow.contexts.procurement.infrastructure.repositories import UserRepository
from facilityflow.db import get_db
from facilityflow.domain.contracts import Actor
from facilityflow.errors import UnauthenticatedError
from facilityflow.policies import VALID_ROLES, is_contractor, normalize_role


ACCESS_SALT = "facilityflow-access"
BEARER_PREFIX = "bearer "


def _unauthenticated(details: str) -> UnauthenticatedError:
    return UnauthenticatedError(
        code="unauthenticated",
        message_key="unauthenticated",
        http_status=401,
        critical=False,
        details=details,
    )


class IdentityService:
    """Signed bearer credentials resolved against the users table."""

    def __init__(self, secret_key: str, max_age_seconds: int = 43200, users: UserRepository | None = None) -> None:
        self.max_age_seconds = max(1, int(max_age_seconds))
        self.users = users or UserRepository()
        self._serializer = URLSafeTimedSerializer(secret_key=secret_key, salt=ACCESS_SALT)

    def issue_credential(self, user_id: int) -> str:
        return self._serializer.dumps({"uid": int(user_id)})

    def verify(self, db, credential: str | None) -> Actor:
        raw = str(credential or "").strip()
        if not raw:
            raise _unauthenticated("missing credential")
        try:
            claims = self._serializer.loads(raw, max_age=self.max_age_seconds)
        except SignatureExpired:
            raise _unauthenticated("credential expired")
        except BadSignature:
            raise _unauthenticated("bad credential signature")

        try:
            user_id = int(claims.get("uid"))
        except (AttributeError, TypeError, ValueError):
            raise _unauthenticated("malformed credential")

        user = self.users.get_by_id(db, user_id)
        if user is None or not user.get("is_active"):
            raise _unauthenticated(f"user {user_id} unknown or inactive")
        role = normalize_role(user.get("role"))
        if role not in VALID_ROLES:
            raise _unauthenticated(f"user {user_id} has no valid role")
        if is_contractor(role) and not user.get("portal_access_enabled"):
            raise _unauthenticated(f"user {user_id} has no portal access")

        display_name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
        return Actor(
            id=int(user["id"]),
            role=role,
            email=str(user["email"]),
            company_affiliation=user.get("company_affiliation"),
            display_name=display_name or str(user["email"]).split("@")[0],
        )


def _credential_from_request() -> str | None:
    header = str(request.headers.get("Authorization") or "").strip()
    if header.lower().startswith(BEARER_PREFIX):
        return header[len(BEARER_PREFIX):].strip()
    return None


def require_actor() -> Actor:
    actor = getattr(g, "actor", None)
    if actor is not None:
        return actor
    identity: IdentityService = current_app.extensions["facilityflow"]["identity"]
    actor = identity.verify(get_db(), _credential_from_request())
    g.actor = actor
    return actor
