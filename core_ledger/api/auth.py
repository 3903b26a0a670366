"""
System wiring and principal dependencies
"""

from typing import Optional

from fastapi import Header, HTTPException, status

from ..accounts import AccountDirectory
from ..alerts import BalanceMonitor, BalanceThresholds
from ..audit import AuditTrail
from ..config import LedgerConfig, get_config
from ..events import EventDispatcher
from ..logging_config import get_logger
from ..storage import InMemoryStorage, SQLiteStorage, StorageInterface
from ..store import LedgerStore
from ..transactions import TransactionEngine


class LedgerSystem:
    """Core ledger with all components initialized"""

    def __init__(self, config: Optional[LedgerConfig] = None, storage: Optional[StorageInterface] = None):
        self.config = config or get_config()
        self.logger = get_logger("core_ledger.api")

        # Initialize storage
        if storage is not None:
            self.storage = storage
        elif self.config.storage_backend == "memory":
            self.storage = InMemoryStorage()
        elif self.config.storage_backend == "sqlite":
            self.storage = SQLiteStorage(self.config.sqlite_path)
        else:
            raise ValueError(f"Unsupported storage backend: {self.config.storage_backend}")

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.store = LedgerStore(self.storage)
        self.directory = AccountDirectory(self.store, self.audit_trail)
        self.event_dispatcher = EventDispatcher()
        self.thresholds = BalanceThresholds.from_config(self.config)

        self.engine = TransactionEngine(
            self.directory,
            audit_trail=self.audit_trail,
            event_dispatcher=self.event_dispatcher,
            thresholds=self.thresholds,
            default_minimum_balance=self.config.default_minimum_balance
        )
        self.balance_monitor = BalanceMonitor(self.directory, self.thresholds, self.event_dispatcher)

        self.logger.info(f"Ledger system initialized with {type(self.storage).__name__}")

    def close(self) -> None:
        self.storage.close()


# Global ledger system instance, created on first use
_ledger_system: Optional[LedgerSystem] = None


def get_ledger_system() -> LedgerSystem:
    global _ledger_system
    if _ledger_system is None:
        _ledger_system = LedgerSystem()
    return _ledger_system


def get_principal_id(x_principal_id: Optional[str] = Header(None)) -> str:
    """
    Authenticated principal, as asserted by the upstream authentication layer
    """
    if not x_principal_id or not x_principal_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Principal-Id header"
        )
    return x_principal_id.strip()
