from __future__ import annotations

import copy
import logging
import re
import threading
import time
from typing import Callable, Dict

from facilityflow.contexts.procurement.infrastructure.repositories.settings_repository import SettingsRepository
from facilityflow.errors import ValidationError


DOCUMENT_KINDS = ("rfq", "quotation", "order", "invoice")

DEFAULT_PREFIXES: Dict[str, str] = {
    "rfq": "PMRFQ",
    "quotation": "QUO",
    "order": "PMO",
    "invoice": "INV",
}

PREFIX_SETTING_KEYS: Dict[str, str] = {kind: f"{kind}_number_prefix" for kind in DOCUMENT_KINDS}

PREFIX_CONFIG_KEYS: Dict[str, str] = {
    "rfq": "RFQ_NUMBER_PREFIX",
    "quotation": "QUOTATION_NUMBER_PREFIX",
    "order": "ORDER_NUMBER_PREFIX",
    "invoice": "INVOICE_NUMBER_PREFIX",
}

PREFIX_PATTERN = re.compile(r"^[A-Z][A-Z0-9-]{1,15}$")

logger = logging.getLogger("facilityflow")


def validate_prefix(prefix: str | None) -> str:
    normalized = str(prefix or "").strip().upper()
    if not PREFIX_PATTERN.match(normalized) or normalized.endswith("-"):
        raise ValidationError(
            code="prefix_invalid",
            message_key="prefix_invalid",
            http_status=400,
            critical=False,
            details=f"prefix {prefix!r}",
        )
    return normalized


def prefixes_from_config(config) -> Dict[str, str]:
    prefixes = dict(DEFAULT_PREFIXES)
    for kind, key in PREFIX_CONFIG_KEYS.items():
        value = config.get(key) if hasattr(config, "get") else getattr(config, key, None)
        if value:
            prefixes[kind] = validate_prefix(value)
    return prefixes


class SettingsCache:
    """Read-through cache over ``system_settings``.

    Values live for ``ttl_seconds`` and are dropped immediately by
    ``invalidate()``, which every write path calls.
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = 30,
        default_prefixes: Dict[str, str] | None = None,
        repository: SettingsRepository | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = max(0, int(ttl_seconds))
        self.default_prefixes = dict(default_prefixes or DEFAULT_PREFIXES)
        self.repository = repository or SettingsRepository()
        self._clock = clock
        self._lock = threading.Lock()
        self._values: Dict[str, str] | None = None
        self._expires_at = 0.0

    def values(self, db) -> Dict[str, str]:
        now = self._clock()
        with self._lock:
            if self._values is not None and now < self._expires_at:
                return copy.deepcopy(self._values)

        loaded = self.repository.load_all(db)
        with self._lock:
            self._values = dict(loaded)
            self._expires_at = now + self.ttl_seconds
        return copy.deepcopy(loaded)

    def invalidate(self) -> None:
        with self._lock:
            self._values = None
            self._expires_at = 0.0

    def document_prefix(self, db, kind: str) -> str:
        if kind not in DOCUMENT_KINDS:
            raise ValueError(f"unknown document kind: {kind}")
        stored = self.values(db).get(PREFIX_SETTING_KEYS[kind])
        if stored and PREFIX_PATTERN.match(stored):
            return stored
        return self.default_prefixes[kind]

    def document_prefixes(self, db) -> Dict[str, str]:
        return {kind: self.document_prefix(db, kind) for kind in DOCUMENT_KINDS}

    def update_document_prefix(self, db, kind: str, prefix: str, *, now: str) -> str:
        if kind not in DOCUMENT_KINDS:
            raise ValidationError(
                code="validation_error",
                message_key="validation_error",
                http_status=400,
                critical=False,
                details=f"document kind {kind!r}",
            )
        normalized = validate_prefix(prefix)
        self.repository.upsert(db, PREFIX_SETTING_KEYS[kind], normalized, now=now)
        self.invalidate()
        logger.info("document_prefix_updated", extra={"document_kind": kind, "prefix": normalized})
        return normalized
