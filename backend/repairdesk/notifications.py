# Overview: Fire-and-forget notification sink, dispatched only after a workflow transaction commits.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from .extensions import db


EVENT_AWAITING_APPROVAL = "AWAITING_APPROVAL"
EVENT_READY_FOR_PICKUP = "READY_FOR_PICKUP"
EVENT_ESTIMATE_SENT = "ESTIMATE_SENT"
EVENT_ESTIMATE_APPROVED = "ESTIMATE_APPROVED"
EVENT_ESTIMATE_REJECTED = "ESTIMATE_REJECTED"
EVENT_ESTIMATE_REMINDER = "ESTIMATE_REMINDER"

_PENDING_KEY = "repairdesk.pending_notifications"


@dataclass(frozen=True)
class NotificationEvent:
    type: str
    order_id: int
    payload: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type, "order_id": self.order_id, "payload": dict(self.payload)}


class LoggingNotificationSink:
    """Default sink: delivery lives elsewhere, so just record what would be sent."""

    def notify(self, event: NotificationEvent) -> None:
        current_app.logger.info(
            "Notification %s for order %s: %s", event.type, event.order_id, event.payload
        )


def get_sink():
    return current_app.config.get("NOTIFICATION_SINK") or LoggingNotificationSink()


def queue_notification(event_type: str, order_id: int, **payload) -> None:
    """Hold an event on the current session until the transaction commits."""
    pending = db.session.info.setdefault(_PENDING_KEY, [])
    pending.append(NotificationEvent(type=event_type, order_id=order_id, payload=payload))


def discard_pending() -> None:
    db.session.info.pop(_PENDING_KEY, None)


def dispatch_pending() -> None:
    """
    Deliver queued events. A failing sink is logged and never propagated:
    the triggering operation has already committed.
    """
    events = db.session.info.pop(_PENDING_KEY, [])
    if not events:
        return
    sink = get_sink()
    for event in events:
        try:
            sink.notify(event)
        except Exception:
            current_app.logger.exception(
                "Notification %s for order %s failed", event.type, event.order_id
            )
