from __future__ import annotations

from typing import Any, Dict, List

from flask import request

from facilityflow.domain.contracts import Attachment, LineItem
from facilityflow.errors import ValidationError


def _invalid(code: str, details: str | None = None) -> ValidationError:
    return ValidationError(code=code, message_key=code, http_status=400, critical=False, details=details)


def json_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise _invalid("validation_error", "JSON object expected")
    return payload


def parse_optional_int(value) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def parse_required_int(value, field: str) -> int:
    parsed = parse_optional_int(value)
    if parsed is None:
        raise _invalid("validation_error", f"{field} must be an integer")
    return parsed


def parse_optional_float(value) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


def parse_int_list(value) -> List[int]:
    if not isinstance(value, list):
        return []
    result: List[int] = []
    for item in value:
        parsed = parse_optional_int(item)
        if parsed is not None:
            result.append(parsed)
    return list(dict.fromkeys(result))


def optional_text(payload: Dict[str, Any], key: str) -> str | None:
    return str(payload.get(key) or "").strip() or None


def parse_line_items(value) -> List[LineItem]:
    if not isinstance(value, list) or not value:
        raise _invalid("items_required")
    items: List[LineItem] = []
    for raw in value:
        if not isinstance(raw, dict):
            raise _invalid("item_invalid")
        quantity = parse_optional_float(raw.get("quantity"))
        unit_price = parse_optional_float(raw.get("unit_price"))
        if quantity is None or unit_price is None:
            raise _invalid("item_invalid", "quantity and unit_price must be numbers")
        items.append(
            LineItem(
                description=str(raw.get("description") or "").strip(),
                quantity=quantity,
                unit_price=unit_price,
            )
        )
    return items


def parse_attachments(value) -> List[Attachment]:
    if not isinstance(value, list):
        return []
    attachments: List[Attachment] = []
    for raw in value:
        if isinstance(raw, str):
            raw = {"url": raw}
        if not isinstance(raw, dict) or not str(raw.get("url") or "").strip():
            raise _invalid("validation_error", "attachment url is required")
        attachments.append(
            Attachment(
                url=str(raw["url"]).strip(),
                name=optional_text(raw, "name"),
                content_type=optional_text(raw, "content_type"),
            )
        )
    return attachments


def parse_contacts(value) -> List[Dict[str, str]]:
    if not isinstance(value, list):
        return []
    contacts = []
    for raw in value:
        if isinstance(raw, str):
            raw = {"email": raw}
        if isinstance(raw, dict):
            contacts.append({"email": str(raw.get("email") or ""), "name": str(raw.get("name") or "")})
    return contacts
