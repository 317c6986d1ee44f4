"""Events and notifications emitted after committed mutations."""

from identity_core.events.dispatcher import Dispatcher
from identity_core.events.models import Event, EventName, NotificationReceiver, NotificationRequest, NotificationType

__all__ = ["Dispatcher", "Event", "EventName", "NotificationReceiver", "NotificationRequest", "NotificationType"]
