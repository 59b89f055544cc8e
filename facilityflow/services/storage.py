from __future__ import annotations

import uuid
from pathlib import Path
from typing import Dict

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.utils import secure_filename

from facilityflow.errors import ForbiddenError, ValidationError


UPLOAD_SALT = "facilityflow-upload"


def safe_upload_name(file_name: str | None) -> str:
    safe_name = secure_filename(str(file_name or ""))
    if not safe_name:
        raise ValidationError(
            code="file_name_invalid",
            message_key="file_name_invalid",
            http_status=400,
            critical=False,
        )
    return safe_name


class SignedUploadStorage:
    """Signed, short-lived upload URLs backed by a local folder."""

    def __init__(self, *, secret_key: str, public_base_url: str, upload_folder: str, ttl_seconds: int = 600) -> None:
        self.public_base_url = str(public_base_url or "").rstrip("/")
        self.upload_folder = Path(upload_folder)
        self.ttl_seconds = max(1, int(ttl_seconds))
        self._serializer = URLSafeTimedSerializer(secret_key=secret_key, salt=UPLOAD_SALT)

    def presign_upload(self, scope: str, file_name: str, file_type: str | None) -> Dict[str, object]:
        safe_name = safe_upload_name(file_name)
        key = f"{secure_filename(scope) or 'uploads'}/{uuid.uuid4().hex}-{safe_name}"
        signed = self._serializer.dumps({"key": key, "content_type": str(file_type or "application/octet-stream")})
        return {
            "uploadUrl": f"{self.public_base_url}/uploads/{signed}",
            "publicUrl": f"{self.public_base_url}/uploads/files/{key}",
            "key": key,
            "expiresIn": self.ttl_seconds,
        }

    def resolve_upload(self, signed: str) -> Dict[str, str]:
        try:
            claims = self._serializer.loads(signed, max_age=self.ttl_seconds)
        except (BadSignature, SignatureExpired) as exc:
            raise ForbiddenError(
                code="upload_not_allowed",
                message_key="upload_not_allowed",
                http_status=403,
                critical=False,
                details=type(exc).__name__,
            ) from exc
        return {"key": str(claims["key"]), "content_type": str(claims.get("content_type") or "")}

    def save_upload(self, signed: str, data: bytes) -> Dict[str, str]:
        claims = self.resolve_upload(signed)
        dest = self.upload_folder / claims["key"]
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(data)
        return {**claims, "publicUrl": f"{self.public_base_url}/uploads/files/{claims['key']}"}
