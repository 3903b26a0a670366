"""
Balance Alerts Module

Threshold rules for low and critical balances and high-value movements.
The engine publishes a breach event after each commit; ``BalanceMonitor``
scans all accounts of one owner on demand. Formatting and delivery of the
alerts belong to whoever subscribes to the events.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from .events import EventDispatcher, EventPayload, LedgerEvent
from .logging_config import get_logger
from .models import Account
from .policy import format_amount
from .results import Ok


class AlertLevel(Enum):
    LOW = "low"
    CRITICAL = "critical"


@dataclass(frozen=True)
class BalanceThresholds:
    """Balance and amount thresholds that trigger alerts"""
    low_balance: Decimal = Decimal("500.00")
    critical_balance: Decimal = Decimal("100.00")
    high_value_amount: Decimal = Decimal("5000.00")

    def __post_init__(self):
        if self.critical_balance > self.low_balance:
            raise ValueError("Critical balance threshold must not exceed the low balance threshold")

    @classmethod
    def from_config(cls, config) -> "BalanceThresholds":
        return cls(
            low_balance=config.low_balance_threshold,
            critical_balance=config.critical_balance_threshold,
            high_value_amount=config.high_value_transaction_amount,
        )

    def classify(self, balance: Decimal) -> Optional[AlertLevel]:
        """Alert level for a balance, or None when the balance is healthy"""
        if balance < self.critical_balance:
            return AlertLevel.CRITICAL
        if balance < self.low_balance:
            return AlertLevel.LOW
        return None

    def threshold_for(self, level: AlertLevel) -> Decimal:
        return self.critical_balance if level == AlertLevel.CRITICAL else self.low_balance

    def is_high_value(self, amount: Decimal) -> bool:
        return amount >= self.high_value_amount


def create_breach_event(
    account: Account,
    level: AlertLevel,
    thresholds: BalanceThresholds,
    transaction_id: Optional[str] = None
) -> EventPayload:
    """Create a balance threshold breach event for an account"""
    return EventPayload(
        event_type=LedgerEvent.BALANCE_THRESHOLD_BREACHED,
        account_id=account.id,
        amount=account.balance,
        transaction_id=transaction_id,
        data={
            "level": level.value,
            "threshold": str(thresholds.threshold_for(level)),
            "minimum_balance": str(account.minimum_balance),
            "owner_id": account.owner_id,
        }
    )


@dataclass
class BalanceScanSummary:
    """Result of scanning one owner's accounts"""
    owner_id: str
    total_accounts: int
    critical_accounts: List[str]
    low_accounts: List[str]

    @property
    def has_critical(self) -> bool:
        return bool(self.critical_accounts)


class BalanceMonitor:
    """Scans an owner's accounts and publishes threshold breach events"""

    def __init__(self, directory, thresholds: BalanceThresholds, event_dispatcher: Optional[EventDispatcher] = None):
        self.directory = directory
        self.thresholds = thresholds
        self._event_dispatcher = event_dispatcher
        self.logger = get_logger("core_ledger.alerts")

    def scan_owner(self, owner_id: str):
        """
        Classify every active account of ``owner_id``.

        Returns ``Ok(BalanceScanSummary)`` or the directory's ``Err``.
        """
        listed = self.directory.list_by_owner(owner_id)
        if not listed.ok:
            return listed

        accounts = listed.value
        summary = BalanceScanSummary(
            owner_id=owner_id,
            total_accounts=len(accounts),
            critical_accounts=[],
            low_accounts=[],
        )
        for account in accounts:
            level = self.thresholds.classify(account.balance)
            if level is None:
                continue
            if level == AlertLevel.CRITICAL:
                summary.critical_accounts.append(account.id)
                self.logger.error(f"Critical balance detected - Account: {account.id}, Balance: {format_amount(account.balance)}")
            else:
                summary.low_accounts.append(account.id)
                self.logger.warning(f"Low balance detected - Account: {account.id}, Balance: {format_amount(account.balance)}")
            if self._event_dispatcher:
                self._event_dispatcher.publish(create_breach_event(account, level, self.thresholds))

        self.logger.info(
            f"Balance scan for {owner_id} completed. Critical: {len(summary.critical_accounts)}/"
            f"{summary.total_accounts}, Low: {len(summary.low_accounts)}/{summary.total_accounts}"
        )
        return Ok(summary)
