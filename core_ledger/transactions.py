"""
Transaction Engine Module

Validates and executes deposits, withdrawals and transfers against the
AccountDirectory. Every operation either commits a balance change together
with one immutable transaction record, or returns a tagged failure and
changes nothing.

Each call walks a transient state machine:
VALIDATING -> OWNERSHIP_CHECKED -> BALANCE_COMPUTED -> PERSISTED -> COMPLETED,
or REJECTED from any gate. The rejecting stage is recorded in the audit trail.
"""

from dataclasses import replace
from decimal import Decimal
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from .accounts import AccountDirectory
from .alerts import BalanceThresholds, create_breach_event
from .audit import AuditTrail, AuditEventType
from .events import EventDispatcher, EventPayload, LedgerEvent, create_transaction_event
from .logging_config import get_logger, log_action
from .models import Account, AccountClass, Transaction, TransactionOutcome, TransactionType
from .ownership import OwnershipGuard
from .policy import generate_account_id, generate_transaction_id, validate_amount, validate_balance_value
from .results import Err, ErrorKind, Ok, Result, fail
from .store import StoreError

__all__ = [
    "OperationState", "Transaction", "TransactionEngine",
    "TransactionOutcome", "TransactionType",
]

DEFAULT_DESCRIPTIONS = {
    TransactionType.DEPOSIT: "Cash deposit",
    TransactionType.WITHDRAWAL: "Cash withdrawal",
    TransactionType.TRANSFER: "Fund transfer",
}


class OperationState(Enum):
    """Stages of a single engine operation"""
    VALIDATING = "validating"
    OWNERSHIP_CHECKED = "ownership_checked"
    BALANCE_COMPUTED = "balance_computed"
    PERSISTED = "persisted"
    COMPLETED = "completed"
    REJECTED = "rejected"


class _Operation:
    """Per-call bookkeeping; never shared between calls"""

    def __init__(self, name: str, principal_id: str, account_ids: Iterable[str], amount=None):
        self.name = name
        self.principal_id = principal_id
        self.account_ids = [a for a in account_ids if a]
        self.amount = amount
        self.state = OperationState.VALIDATING
        self.rejected_at: Optional[OperationState] = None

    def advance(self, state: OperationState) -> None:
        self.state = state

    def reject(self) -> None:
        self.rejected_at = self.state
        self.state = OperationState.REJECTED


class TransactionEngine:
    """
    Executes money movements with ownership, amount and floor checks.

    Balance read-modify-write spans run under the directory's per-account
    locks, so concurrent operations on the same account never lose updates.
    """

    def __init__(
        self,
        directory: AccountDirectory,
        guard: Optional[OwnershipGuard] = None,
        audit_trail: Optional[AuditTrail] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        thresholds: Optional[BalanceThresholds] = None,
        id_factory: Callable[[], str] = generate_transaction_id,
        default_minimum_balance: Decimal = Decimal("100.00")
    ):
        self.directory = directory
        self.guard = guard or OwnershipGuard()
        self.audit_trail = audit_trail
        self.thresholds = thresholds or BalanceThresholds()
        self.id_factory = id_factory
        self.default_minimum_balance = default_minimum_balance
        self.logger = get_logger("core_ledger.transactions")

        # Notification collaborators subscribe here
        self._event_dispatcher = event_dispatcher

    # Money movements

    def deposit(self, principal_id: str, account_id: str, amount) -> Result[Transaction]:
        """
        Deposit into an account owned by ``principal_id``.

        Returns the DEPOSIT transaction, or Err with INVALID_AMOUNT,
        ACCOUNT_NOT_FOUND, ACCESS_DENIED, DUPLICATE_TRANSACTION_ID or
        PERSIST_FAILURE.
        """
        op = _Operation("deposit", principal_id, [account_id], amount)
        checked = validate_amount(amount)
        if not checked.ok:
            return self._reject(op, checked)
        amount = op.amount = checked.value

        with self.directory.locked(account_id):
            resolved = self.directory.resolve(account_id)
            if not resolved.ok:
                return self._reject(op, resolved)
            account = resolved.value

            denied = self._authorize(op, account)
            if denied:
                return denied

            updated = replace(account, balance=account.balance + amount)
            op.advance(OperationState.BALANCE_COMPUTED)

            committed = self._commit(
                op, TransactionType.DEPOSIT, amount,
                updated=[updated],
                source_account_id=account_id,
            )
        return self._finish(op, committed, [updated])

    def withdraw(self, principal_id: str, account_id: str, amount) -> Result[Transaction]:
        """
        Withdraw from an account owned by ``principal_id``.

        Fails with INSUFFICIENT_FUNDS when the balance would drop below the
        account's minimum balance; the error carries the current balance,
        the requested amount and the floor.
        """
        op = _Operation("withdraw", principal_id, [account_id], amount)
        checked = validate_amount(amount)
        if not checked.ok:
            return self._reject(op, checked)
        amount = op.amount = checked.value

        with self.directory.locked(account_id):
            resolved = self.directory.resolve(account_id)
            if not resolved.ok:
                return self._reject(op, resolved)
            account = resolved.value

            denied = self._authorize(op, account)
            if denied:
                return denied

            insufficient = self._check_funds(op, account, amount)
            if insufficient:
                return insufficient

            updated = replace(account, balance=account.balance - amount)
            op.advance(OperationState.BALANCE_COMPUTED)

            committed = self._commit(
                op, TransactionType.WITHDRAWAL, amount,
                updated=[updated],
                source_account_id=account_id,
            )
        return self._finish(op, committed, [updated])

    def transfer(self, principal_id: str, from_account_id: str, to_account_id: str, amount) -> Result[Transaction]:
        """
        Move funds from an account owned by ``principal_id`` to any existing
        account.

        Both balances and the TRANSFER record are written in one atomic
        commit. Ownership and the funds check apply to the source only.
        """
        op = _Operation("transfer", principal_id, [from_account_id, to_account_id], amount)
        checked = validate_amount(amount)
        if not checked.ok:
            return self._reject(op, checked)
        amount = op.amount = checked.value

        if from_account_id == to_account_id:
            return self._reject(op, fail(
                ErrorKind.INVALID_TRANSFER,
                "Source and destination accounts must differ",
                account_id=from_account_id, amount=amount
            ))

        with self.directory.locked(from_account_id, to_account_id):
            source_resolved = self.directory.resolve(from_account_id)
            if not source_resolved.ok:
                return self._reject(op, source_resolved)
            destination_resolved = self.directory.resolve(to_account_id)
            if not destination_resolved.ok:
                return self._reject(op, destination_resolved)
            source = source_resolved.value
            destination = destination_resolved.value

            denied = self._authorize(op, source)
            if denied:
                return denied

            insufficient = self._check_funds(op, source, amount)
            if insufficient:
                return insufficient

            updated = [
                replace(source, balance=source.balance - amount),
                replace(destination, balance=destination.balance + amount),
            ]
            op.advance(OperationState.BALANCE_COMPUTED)

            committed = self._commit(
                op, TransactionType.TRANSFER, amount,
                updated=updated,
                source_account_id=from_account_id,
                destination_account_id=to_account_id,
            )
        return self._finish(op, committed, updated)

    # Reads

    def get_history(self, principal_id: str, account_id: str) -> Result[List[Transaction]]:
        """All transactions touching an owned account, newest first"""
        op = _Operation("get_history", principal_id, [account_id])
        resolved = self.directory.resolve(account_id)
        if not resolved.ok:
            return self._reject(op, resolved, audit=False)

        denied = self._authorize(op, resolved.value)
        if denied:
            return denied

        try:
            transactions = self.directory.store.list_transactions_by_account(account_id)
        except StoreError as e:
            return self._reject(op, fail(ErrorKind.PERSIST_FAILURE, str(e), account_id=account_id), audit=False)

        # Stable sort keeps later inserts first among equal timestamps
        transactions.reverse()
        transactions.sort(key=lambda t: t.created_at, reverse=True)
        return Ok(transactions)

    def get_account(self, principal_id: str, account_id: str) -> Result[Account]:
        """Resolve an account on behalf of its owner"""
        op = _Operation("get_account", principal_id, [account_id])
        resolved = self.directory.resolve(account_id)
        if not resolved.ok:
            return self._reject(op, resolved, audit=False)

        denied = self._authorize(op, resolved.value)
        if denied:
            return denied
        return resolved

    # Account opening

    def open_account(
        self,
        principal_id: str,
        display_name: str,
        account_class: AccountClass,
        initial_deposit,
        minimum_balance=None
    ) -> Result[Account]:
        """
        Open an account for ``principal_id`` with an opening deposit.

        The opening deposit must cover the minimum balance (the configured
        default when ``minimum_balance`` is None). The account and its
        opening DEPOSIT record are stored atomically.
        """
        op = _Operation("open_account", principal_id, [], initial_deposit)
        checked = validate_amount(initial_deposit)
        if not checked.ok:
            return self._reject(op, checked)
        initial_deposit = op.amount = checked.value

        floor_checked = validate_balance_value(
            self.default_minimum_balance if minimum_balance is None else minimum_balance
        )
        if not floor_checked.ok:
            return self._reject(op, floor_checked)
        floor = floor_checked.value

        if initial_deposit < floor:
            return self._reject(op, fail(
                ErrorKind.INSUFFICIENT_FUNDS,
                f"Opening deposit {initial_deposit} is below the minimum balance {floor}",
                amount=initial_deposit, balance=Decimal("0.00"), minimum_balance=floor
            ))

        now = datetime.now(timezone.utc)
        account = Account(
            id=generate_account_id(now),
            created_at=now,
            updated_at=now,
            owner_id=str(principal_id),
            display_name=display_name,
            balance=initial_deposit,
            account_class=account_class,
            minimum_balance=floor,
        )
        op.account_ids = [account.id]
        op.advance(OperationState.BALANCE_COMPUTED)

        created = None
        for _attempt in range(2):
            opening = self._build_transaction(
                TransactionType.DEPOSIT, initial_deposit, now,
                source_account_id=account.id, description="Opening deposit"
            )
            created = self.directory.create(account, opening)
            if created.ok or created.kind != ErrorKind.DUPLICATE_TRANSACTION_ID:
                break
            self.logger.warning(f"Transaction id collision on {opening.id}, regenerating")
        if not created.ok:
            return self._reject(op, created)

        op.advance(OperationState.PERSISTED)
        self._finish(op, Ok(opening), [account])
        self._publish(EventPayload(
            event_type=LedgerEvent.ACCOUNT_OPENED,
            account_id=account.id,
            amount=initial_deposit,
            timestamp=now,
            transaction_id=opening.id,
            data={"account_class": account.account_class.value, "owner_id": account.owner_id}
        ))
        return created

    # Gates

    def _authorize(self, op: _Operation, account: Account) -> Optional[Err]:
        decision = self.guard.authorize(op.principal_id, account)
        if decision.allowed:
            op.advance(OperationState.OWNERSHIP_CHECKED)
            return None

        self.logger.warning(
            f"Security violation: principal {decision.principal_id} attempted to access "
            f"account {decision.account_id} owned by {decision.owner_id}"
        )
        self._audit(
            AuditEventType.ACCESS_DENIED, "account", account.id, op.principal_id,
            dict(decision.audit_metadata(), operation=op.name)
        )
        return self._reject(op, fail(
            ErrorKind.ACCESS_DENIED,
            "Access denied: you can only operate on your own accounts",
            account_id=account.id
        ), audit=op.name not in ("get_history", "get_account"))

    def _check_funds(self, op: _Operation, account: Account, amount: Decimal) -> Optional[Err]:
        if account.balance - amount >= account.minimum_balance:
            return None
        return self._reject(op, fail(
            ErrorKind.INSUFFICIENT_FUNDS,
            f"Insufficient funds in {account.id}: balance {account.balance}, "
            f"requested {amount}, minimum balance {account.minimum_balance}",
            account_id=account.id,
            amount=amount,
            balance=account.balance,
            minimum_balance=account.minimum_balance
        ))

    # Commit

    def _build_transaction(self, transaction_type: TransactionType, amount: Decimal, now: datetime,
                           source_account_id: Optional[str] = None,
                           destination_account_id: Optional[str] = None,
                           description: Optional[str] = None) -> Transaction:
        return Transaction(
            id=self.id_factory(),
            created_at=now,
            updated_at=now,
            source_account_id=source_account_id,
            destination_account_id=destination_account_id,
            amount=amount,
            transaction_type=transaction_type,
            description=description or DEFAULT_DESCRIPTIONS[transaction_type],
        )

    def _commit(self, op: _Operation, transaction_type: TransactionType, amount: Decimal,
                updated: List[Account], source_account_id: Optional[str] = None,
                destination_account_id: Optional[str] = None) -> Result[Transaction]:
        """Check the floor on every touched account, then persist atomically"""
        for account in updated:
            if not account.satisfies_floor():
                return self._reject(op, fail(
                    ErrorKind.INSUFFICIENT_FUNDS,
                    f"Balance of {account.id} would fall below its minimum balance",
                    account_id=account.id, amount=amount,
                    balance=account.balance, minimum_balance=account.minimum_balance
                ))

        balances: Dict[str, Decimal] = {account.id: account.balance for account in updated}
        now = datetime.now(timezone.utc)

        # One regeneration on id collision; nothing was written on the first try
        for attempt in range(2):
            transaction = self._build_transaction(
                transaction_type, amount, now,
                source_account_id=source_account_id,
                destination_account_id=destination_account_id,
            )
            committed = self.directory.apply_movement(balances, transaction)
            if committed.ok:
                op.advance(OperationState.PERSISTED)
                return committed
            if committed.kind != ErrorKind.DUPLICATE_TRANSACTION_ID:
                break
            self.logger.warning(f"Transaction id collision on {transaction.id}, attempt {attempt + 1}")
        return self._reject(op, committed)

    def _finish(self, op: _Operation, committed: Result[Transaction], updated: List[Account]) -> Result[Transaction]:
        """Post-commit bookkeeping, run after the account locks are released"""
        if not committed.ok:
            return committed

        transaction = committed.value
        op.advance(OperationState.COMPLETED)
        log_action(
            self.logger, "info", f"{transaction.transaction_type.value} committed: {transaction.id}",
            user_id=op.principal_id, action=op.name, resource=f"transaction:{transaction.id}",
            extra={
                "amount": str(transaction.amount),
                "source_account_id": transaction.source_account_id,
                "destination_account_id": transaction.destination_account_id,
                "balances": {account.id: str(account.balance) for account in updated},
            }
        )
        self._audit(
            AuditEventType.TRANSACTION_COMMITTED, "transaction", transaction.id, op.principal_id,
            {
                "operation": op.name,
                "transaction_type": transaction.transaction_type.value,
                "amount": transaction.amount,
                "source_account_id": transaction.source_account_id,
                "destination_account_id": transaction.destination_account_id,
            }
        )

        for account in updated:
            self._publish(create_transaction_event(transaction, account.id))
            level = self.thresholds.classify(account.balance)
            if level is not None:
                self._publish(create_breach_event(account, level, self.thresholds, transaction.id))

        if self.thresholds.is_high_value(transaction.amount):
            self._publish(EventPayload(
                event_type=LedgerEvent.HIGH_VALUE_TRANSACTION,
                account_id=updated[0].id,
                amount=transaction.amount,
                timestamp=transaction.created_at,
                transaction_id=transaction.id,
                data={"transaction_type": transaction.transaction_type.value}
            ))
        return committed

    # Failure reporting

    def _reject(self, op: _Operation, err: Err, audit: bool = True) -> Err:
        op.reject()
        log_action(
            self.logger, "info", f"{op.name} rejected: {err.error.message}",
            user_id=op.principal_id, action=op.name,
            extra={"kind": err.kind.value, "stage": op.rejected_at.value, "accounts": op.account_ids}
        )
        if audit:
            self._audit(
                AuditEventType.TRANSACTION_REJECTED, "account",
                op.account_ids[0] if op.account_ids else "-", op.principal_id,
                {
                    "operation": op.name,
                    "kind": err.kind.value,
                    "stage": op.rejected_at.value,
                    "account_ids": op.account_ids,
                    "amount": str(op.amount) if op.amount is not None else None,
                }
            )
        return err

    def _audit(self, event_type: AuditEventType, entity_type: str, entity_id: str,
               principal_id: Optional[str], metadata: dict) -> None:
        if not self.audit_trail:
            return
        try:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                user_id=str(principal_id) if principal_id is not None else None,
                metadata=metadata
            )
        except Exception:
            # The operation result stands; the audit gap is reported here
            self.logger.exception(f"Failed to write audit event {event_type.value} for {entity_type}:{entity_id}")

    def _publish(self, event: EventPayload) -> None:
        if self._event_dispatcher:
            self._event_dispatcher.publish(event)
