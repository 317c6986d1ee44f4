"""
Event and notification payloads emitted after committed mutations.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from identity_core.domain.auth import Principal
from identity_core.domain.identifiers import EntityID
from identity_core.domain.models import utcnow


class EventName(str, Enum):
    """Operation part of an event name; the entity kind is prefixed."""

    CREATE = "create"
    PURGE = "purge"
    API_KEY_CREATE = "api-key.create"
    API_KEY_UPDATE = "api-key.update"
    API_KEY_DELETE = "api-key.delete"
    COLLABORATOR_UPDATE = "collaborator.update"
    COLLABORATOR_DELETE = "collaborator.delete"


class NotificationType(str, Enum):
    API_KEY_CREATED = "api_key_created"
    API_KEY_CHANGED = "api_key_changed"
    COLLABORATOR_CHANGED = "collaborator_changed"


class NotificationReceiver(str, Enum):
    COLLABORATOR = "COLLABORATOR"
    ADMINISTRATIVE_CONTACT = "ADMINISTRATIVE_CONTACT"
    TECHNICAL_CONTACT = "TECHNICAL_CONTACT"


class Actor(BaseModel):
    source: str
    subject: str | None = None
    key_id: str | None = None

    @classmethod
    def from_principal(cls, principal: Principal) -> Actor:
        return cls(
            source=principal.source.value,
            subject=str(principal.subject) if principal.subject is not None else None,
            key_id=principal.key_id,
        )


class Event(BaseModel):
    """A typed event such as ``gateway.api-key.delete``."""

    name: str
    entity_kind: str
    entity_id: str
    actor: Actor
    request_id: str | None = None
    time: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def build(
        cls,
        operation: EventName,
        entity: EntityID,
        principal: Principal,
        request_id: str | None = None,
        **data: Any,
    ) -> Event:
        return cls(
            name=f"{entity.kind.value}.{operation.value}",
            entity_kind=entity.kind.value,
            entity_id=entity.id,
            actor=Actor.from_principal(principal),
            request_id=request_id,
            data=data,
        )


class NotificationRequest(BaseModel):
    """Ask the notification service to inform the entity's contacts.

    Recipient preference filtering happens in the receiving service.
    """

    entity_kind: str
    entity_id: str
    notification_type: NotificationType
    receivers: list[NotificationReceiver]
    sender: Actor
    request_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def build(
        cls,
        notification_type: NotificationType,
        entity: EntityID,
        principal: Principal,
        receivers: list[NotificationReceiver],
        request_id: str | None = None,
        **data: Any,
    ) -> NotificationRequest:
        return cls(
            entity_kind=entity.kind.value,
            entity_id=entity.id,
            notification_type=notification_type,
            receivers=receivers,
            sender=Actor.from_principal(principal),
            request_id=request_id,
            data=data,
        )
