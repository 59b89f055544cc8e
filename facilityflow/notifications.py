from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

from facilityflow.contexts.procurement.infrastructure.repositories import NotificationRepository, UserRepository
from facilityflow.timeutils import Clock, to_iso, utc_now


logger = logging.getLogger("facilityflow")


@dataclass(frozen=True)
class NotificationMessage:
    recipient_id: int
    role: str
    message: str
    type: str
    related_entity_id: int | None = None
    related_entity_type: str | None = None


@dataclass(frozen=True)
class AdminBroadcast:
    message: str
    type: str
    related_entity_id: int | None = None
    related_entity_type: str | None = None


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    from_context: Dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    def notify(self, db, message: NotificationMessage) -> None: ...

    def notify_admins(self, db, broadcast: AdminBroadcast) -> None: ...


class EmailSink(Protocol):
    def send_email(self, message: EmailMessage) -> None: ...


class NotificationOutbox:
    """Messages queued by one operation, delivered only after it commits."""

    def __init__(self) -> None:
        self.items: List[object] = []

    def notify(
        self,
        recipient_id: int,
        role: str,
        message: str,
        notification_type: str,
        related_entity_id: int | None = None,
        related_entity_type: str | None = None,
    ) -> None:
        self.items.append(
            NotificationMessage(
                recipient_id=int(recipient_id),
                role=role,
                message=message,
                type=notification_type,
                related_entity_id=related_entity_id,
                related_entity_type=related_entity_type,
            )
        )

    def notify_admins(
        self,
        message: str,
        notification_type: str,
        related_entity_id: int | None = None,
        related_entity_type: str | None = None,
    ) -> None:
        self.items.append(
            AdminBroadcast(
                message=message,
                type=notification_type,
                related_entity_id=related_entity_id,
                related_entity_type=related_entity_type,
            )
        )

    def email(self, to: str, subject: str, html: str, **from_context: Any) -> None:
        self.items.append(EmailMessage(to=to, subject=subject, html=html, from_context=dict(from_context)))

    def __len__(self) -> int:
        return len(self.items)


class NotificationFanout:
    def __init__(self, notification_sink: NotificationSink, email_sink: EmailSink) -> None:
        self.notification_sink = notification_sink
        self.email_sink = email_sink

    def deliver(self, db, outbox: NotificationOutbox) -> Dict[str, int]:
        delivered = 0
        failed = 0
        for item in outbox.items:
            try:
                self._deliver_one(db, item)
                delivered += 1
            except Exception:  # noqa: BLE001
                failed += 1
                logger.exception(
                    "notification_delivery_failed",
                    extra={"delivery_kind": type(item).__name__, "notification_type": getattr(item, "type", None)},
                )
        return {"delivered": delivered, "failed": failed}

    def _deliver_one(self, db, item) -> None:
        if isinstance(item, NotificationMessage):
            self.notification_sink.notify(db, item)
        elif isinstance(item, AdminBroadcast):
            self.notification_sink.notify_admins(db, item)
        elif isinstance(item, EmailMessage):
            self.email_sink.send_email(item)
        else:
            raise TypeError(f"unsupported outbox item: {type(item).__name__}")


class DatabaseNotificationSink:
    def __init__(
        self,
        repository: NotificationRepository | None = None,
        users: UserRepository | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository or NotificationRepository()
        self.users = users or UserRepository()
        self.clock = clock

    def notify(self, db, message: NotificationMessage) -> None:
        self.repository.create(
            db,
            recipient_id=message.recipient_id,
            recipient_role=message.role,
            message=message.message,
            notification_type=message.type,
            related_entity_id=message.related_entity_id,
            related_entity_type=message.related_entity_type,
            now=to_iso(self.clock()),
        )

    def notify_admins(self, db, broadcast: AdminBroadcast) -> None:
        now = to_iso(self.clock())
        with db.transaction():
            for admin in self.users.list_admins(db):
                self.repository.create(
                    db,
                    recipient_id=int(admin["id"]),
                    recipient_role=str(admin["role"]),
                    message=broadcast.message,
                    notification_type=broadcast.type,
                    related_entity_id=broadcast.related_entity_id,
                    related_entity_type=broadcast.related_entity_type,
                    now=now,
                )


class LoggingEmailSink:
    """Records outgoing mail in the log; transport is handled outside this service."""

    def send_email(self, message: EmailMessage) -> None:
        logger.info(
            "email_queued",
            extra={
                "email_to": message.to,
                "email_subject": message.subject,
                "email_context": dict(message.from_context),
            },
        )
