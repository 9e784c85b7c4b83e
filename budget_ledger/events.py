"""
Notification Hub Module

Publish/subscribe channel that lets dashboards and other observers react to
ledger mutations without the ledger depending on them. A hub instance is
injected into the allocation store, transaction ledger and report aggregator;
subscribers get a Subscription handle they can release explicitly.
"""

from enum import Enum
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    """Domain events published by the ledger"""

    FUND_UPDATED = "fund.updated"
    TRANSACTION_CREATED = "transaction.created"
    TRANSACTION_STATUS_CHANGED = "transaction.status_changed"
    REPORT_GENERATED = "report.generated"
    DASHBOARD_REFRESH = "dashboard.refresh"


class UpdateType(Enum):
    """Kind of change carried by FUND_UPDATED"""
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventPayload':
        """Create from dictionary"""
        return cls(
            event_type=DomainEvent(data['event_type']),
            entity_type=data['entity_type'],
            entity_id=data['entity_id'],
            data=data['data'],
            timestamp=datetime.fromisoformat(data['timestamp']) if isinstance(data['timestamp'], str) else data['timestamp'],
            event_id=data['event_id']
        )


Handler = Callable[[EventPayload], None]


class Subscription:
    """Handle returned by subscribe(); releases the handler on unsubscribe()"""

    def __init__(self, hub: 'NotificationHub', event_type: Optional[DomainEvent], handler: Handler):
        self._hub = hub
        self.event_type = event_type
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self._hub._remove(self.event_type, self.handler)
        self.active = False

    def __enter__(self) -> 'Subscription':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()


class NotificationHub:
    """Event dispatcher: typed publish/subscribe with explicit lifetimes"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Handler]] = {}
        self._global_handlers: List[Handler] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = logging.getLogger("budget_ledger.events")

    def subscribe(self, event_type: DomainEvent, handler: Handler) -> Subscription:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug("Subscribed %s to %s", _handler_name(handler), event_type.value)
        return Subscription(self, event_type, handler)

    def subscribe_all(self, handler: Handler) -> Subscription:
        """Subscribe to every event"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug("Subscribed global handler %s", _handler_name(handler))
        return Subscription(self, None, handler)

    def _remove(self, event_type: Optional[DomainEvent], handler: Handler) -> None:
        with self._lock:
            handlers = self._global_handlers if event_type is None else self._handlers.get(event_type, [])
            try:
                handlers.remove(handler)
            except ValueError:
                self.logger.warning("Handler %s was not subscribed", _handler_name(handler))

    def publish(self, event: EventPayload) -> None:
        """Deliver an event to current subscribers, in subscription order.

        Handler errors are logged and never reach the publisher.
        """
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug("Publishing %s for %s:%s", event.event_type.value, event.entity_type, event.entity_id)
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                self.logger.exception(
                    "Error in event handler %s for %s", _handler_name(handler), event.event_type.value
                )

    def emit(self, event_type: DomainEvent, entity_type: str, entity_id: str,
             data: Optional[Dict[str, Any]] = None) -> EventPayload:
        """Build and publish an event in one call"""
        event = EventPayload(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            data=data or {}
        )
        self.publish(event)
        return event

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def handler_count(self, event_type: Optional[DomainEvent] = None) -> int:
        """Count handlers for one event type, or all handlers"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


def _handler_name(handler: Handler) -> str:
    return getattr(handler, "__name__", repr(handler))


# Convenience functions for common event patterns
def fund_updated_event(fund, update_type: UpdateType) -> EventPayload:
    """Create a FUND_UPDATED event"""
    return EventPayload(
        event_type=DomainEvent.FUND_UPDATED,
        entity_type="fund",
        entity_id=fund.id,
        data={
            "fund_code": fund.fund_code,
            "update_type": update_type.value,
            "new_balance": str(fund.remaining_balance),
        }
    )


def transaction_created_event(transaction) -> EventPayload:
    """Create a TRANSACTION_CREATED event"""
    return EventPayload(
        event_type=DomainEvent.TRANSACTION_CREATED,
        entity_type="transaction",
        entity_id=transaction.id,
        data={
            "transaction_number": transaction.transaction_number,
            "fund_id": transaction.fund_id,
            "amount": str(transaction.amount),
            "transaction_type": transaction.transaction_type.value,
        }
    )


def status_changed_event(transaction, old_status) -> EventPayload:
    """Create a TRANSACTION_STATUS_CHANGED event"""
    return EventPayload(
        event_type=DomainEvent.TRANSACTION_STATUS_CHANGED,
        entity_type="transaction",
        entity_id=transaction.id,
        data={
            "transaction_number": transaction.transaction_number,
            "old_status": old_status.value,
            "new_status": transaction.status.value,
        }
    )
