"""
Event System Module

Publish/subscribe dispatcher for post-commit ledger events. Notification
collaborators subscribe here; a failing handler is logged and never affects
the operation that published the event.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
import uuid
import logging
from threading import RLock


class LedgerEvent(Enum):
    """Events published by the ledger after a commit"""
    ACCOUNT_OPENED = "account.opened"
    DEPOSIT_COMMITTED = "transaction.deposit"
    WITHDRAWAL_COMMITTED = "transaction.withdrawal"
    TRANSFER_COMMITTED = "transaction.transfer"
    BALANCE_THRESHOLD_BREACHED = "balance.threshold_breached"
    HIGH_VALUE_TRANSACTION = "transaction.high_value"


@dataclass
class EventPayload:
    """Payload for ledger events: ``{type, account, amount, timestamp}`` plus context"""
    event_type: LedgerEvent
    account_id: str
    amount: Optional[Decimal]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    transaction_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'account_id': self.account_id,
            'amount': str(self.amount) if self.amount is not None else None,
            'timestamp': self.timestamp.isoformat(),
            'transaction_id': self.transaction_id,
            'data': self.data,
            'event_id': self.event_id
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventPayload':
        """Create from dictionary"""
        return cls(
            event_type=LedgerEvent(data['event_type']),
            account_id=data['account_id'],
            amount=Decimal(data['amount']) if data.get('amount') is not None else None,
            timestamp=datetime.fromisoformat(data['timestamp']) if isinstance(data['timestamp'], str) else data['timestamp'],
            transaction_id=data.get('transaction_id'),
            data=data.get('data') or {},
            event_id=data['event_id']
        )


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


class EventDispatcher:
    """Central event dispatcher, publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[LedgerEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = logging.getLogger("core_ledger.events")

    def subscribe(self, event_type: LedgerEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def unsubscribe(self, event_type: LedgerEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._global_handlers)

        self.logger.debug(f"Publishing event {event.event_type.value} for account {event.account_id}")
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                # Log but don't break the main operation
                self.logger.error(
                    f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}",
                    exc_info=True
                )

    def clear(self) -> None:
        """Clear all handlers"""
        with self._lock:
            self._handlers.clear()
            self._global_handlers.clear()

    def get_handler_count(self, event_type: Optional[LedgerEvent] = None) -> int:
        """Get count of handlers for a specific event type or all"""
        with self._lock:
            if event_type:
                return len(self._handlers.get(event_type, []))
            total = sum(len(handlers) for handlers in self._handlers.values())
            return total + len(self._global_handlers)


TRANSACTION_EVENTS = {
    "DEPOSIT": LedgerEvent.DEPOSIT_COMMITTED,
    "WITHDRAWAL": LedgerEvent.WITHDRAWAL_COMMITTED,
    "TRANSFER": LedgerEvent.TRANSFER_COMMITTED,
}


def create_transaction_event(transaction, account_id: str) -> EventPayload:
    """Create the post-commit event for one account touched by a transaction"""
    return EventPayload(
        event_type=TRANSACTION_EVENTS[transaction.transaction_type.value],
        account_id=account_id,
        amount=transaction.amount,
        timestamp=transaction.created_at,
        transaction_id=transaction.id,
        data={
            "transaction_type": transaction.transaction_type.value,
            "source_account_id": transaction.source_account_id,
            "destination_account_id": transaction.destination_account_id,
            "description": transaction.description,
        }
    )
