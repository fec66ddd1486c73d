"""
Wallet ledger - append-only transaction log per wallet.

Each posting appends one immutable row and moves the wallet's cached balance
in the same conditional write. The wallet's `version` equals the number of
rows, so the row sequence doubles as the optimistic-concurrency token:
postings against a stale version are rejected by the store and retried from a
fresh read.
"""
import uuid
from typing import Optional

from .errors import (
    InsufficientBalance,
    InvalidInput,
    InvariantViolation,
    NotFound,
    SettlementFailure,
    WriteConflict,
)
from .events import WALLET_POSTED, wallet_channel
from .logging import logger
from .models import (
    CREDIT_TYPES,
    DEBIT_TYPES,
    Role,
    TransactionStatus,
    TransactionType,
)
from .store import ConditionFailed, Put, Update
from .utils import to_iso


class WalletLedger:

    def __init__(self, ctx):
        self.ctx = ctx
        self.store = ctx.store

    def _now(self) -> str:
        return to_iso(self.ctx.clock())

    def open_wallet(self, owner_id: str, owner_role: str, currency: str = None) -> dict:
        """Create the owner's wallet if it does not exist yet. Idempotent."""
        now = self._now()
        wallet = {
            'walletId': owner_id,
            'ownerId': owner_id,
            'ownerRole': owner_role,
            'balance': 0,
            'totalCredited': 0,
            'totalDebited': 0,
            'totalWithdrawn': 0,
            'reserved': 0,
            'currency': currency or self.ctx.settings.CURRENCY,
            'version': 0,
            'createdAt': now,
            'updatedAt': now,
        }
        try:
            self.store.put('wallets', wallet)
            logger.info(f"Opened wallet {owner_id} ({owner_role})")
            return wallet
        except ConditionFailed:
            return self.get_wallet(owner_id)

    def get_wallet(self, wallet_id: str) -> dict:
        wallet = self.store.get('wallets', {'walletId': wallet_id})
        if wallet is None:
            raise NotFound(f'Wallet {wallet_id} not found')
        return wallet

    def transactions(self, wallet_id: str) -> list:
        """Ledger rows of a wallet in posting order."""
        return self.store.query('transactions', wallet_id)

    def plan_posting(
        self,
        wallet: dict,
        amount: int,
        transaction_type,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        now: Optional[str] = None,
        release: int = 0
    ) -> tuple:
        """
        Build the writes for one posting without executing them, so callers can
        compose several postings (and other writes) into a single transaction.

        `release` drops that much of the wallet's payout reservation in the
        same wallet write.

        Returns:
            tuple: (writes, updated_wallet, transaction_row)
        """
        transaction_type = TransactionType(transaction_type)
        if not isinstance(amount, int) or isinstance(amount, bool) or amount == 0:
            raise InvalidInput('Amount must be a non-zero whole number of currency units')
        if transaction_type in CREDIT_TYPES and amount < 0:
            raise InvalidInput(f'{transaction_type.value} postings must be positive')
        if transaction_type in DEBIT_TYPES and amount > 0:
            raise InvalidInput(f'{transaction_type.value} postings must be negative')

        balance_before = wallet['balance']
        balance_after = balance_before + amount
        if balance_after < 0:
            raise InsufficientBalance(balance_before, -amount)

        now = now or self._now()
        sequence = wallet['version'] + 1
        transaction = {
            'walletId': wallet['walletId'],
            'sequence': sequence,
            'transactionId': str(uuid.uuid4()),
            'transactionType': transaction_type.value,
            'amount': amount,
            'balanceBefore': balance_before,
            'balanceAfter': balance_after,
            'status': TransactionStatus.COMPLETED,
            'referenceType': reference_type,
            'referenceId': reference_id,
            'description': description,
            'createdAt': now,
        }

        updated = dict(wallet)
        updated['balance'] = balance_after
        if amount > 0:
            updated['totalCredited'] = wallet['totalCredited'] + amount
        else:
            updated['totalDebited'] = wallet['totalDebited'] - amount
        if transaction_type == TransactionType.WITHDRAWAL:
            updated['totalWithdrawn'] = wallet['totalWithdrawn'] - amount
        updated['version'] = sequence
        updated['updatedAt'] = now

        values = {
            'balance': updated['balance'],
            'totalCredited': updated['totalCredited'],
            'totalDebited': updated['totalDebited'],
            'totalWithdrawn': updated['totalWithdrawn'],
            'version': sequence,
            'updatedAt': now,
        }
        expected = {'version': wallet['version']}
        if release:
            reserved = wallet.get('reserved', 0)
            if release > reserved:
                raise InvariantViolation(
                    f"Wallet {wallet['walletId']} reserves {reserved}, cannot release {release}"
                )
            updated['reserved'] = values['reserved'] = reserved - release
            # Reservations do not move the version
            expected['reserved'] = reserved

        writes = [
            Update('wallets', {'walletId': wallet['walletId']}, values=values, expected=expected),
            Put('transactions', transaction),
        ]
        return writes, updated, transaction

    def post(
        self,
        wallet_id: str,
        amount: int,
        transaction_type,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        description: Optional[str] = None,
        extra_writes=(),
        release: int = 0
    ) -> dict:
        """
        Append a posting to a wallet.

        Retries from a fresh read when another posting wins the race for the
        same wallet version. Balance checks are re-evaluated on every attempt.

        Returns:
            The written transaction row
        """
        attempts = self.ctx.settings.LEDGER_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            wallet = self.get_wallet(wallet_id)
            writes, _, transaction = self.plan_posting(
                wallet, amount, transaction_type, reference_type, reference_id, description,
                release=release
            )
            try:
                self.store.transact(writes + list(extra_writes))
            except ConditionFailed as e:
                if e.index is not None and e.index >= len(writes):
                    raise
                logger.warning(f"Version conflict on wallet {wallet_id} (attempt {attempt}/{attempts})")
                continue

            logger.info(
                f"Posted {transaction['transactionType']} {amount} to {wallet_id}: "
                f"{transaction['balanceBefore']} -> {transaction['balanceAfter']}"
            )
            self.publish_posted(transaction)
            return transaction

        raise WriteConflict(f'Could not post to wallet {wallet_id} after {attempts} attempts')

    def reverse(self, wallet_id: str, sequence: int, reason: str = None) -> dict:
        """Correct a posting by appending its negation. A row can be reversed once."""
        original = self.store.get('transactions', {'walletId': wallet_id, 'sequence': sequence})
        if original is None:
            raise NotFound(f'Transaction {sequence} not found in wallet {wallet_id}')
        if original['transactionType'] == TransactionType.REVERSAL.value:
            raise InvalidInput('A reversal cannot itself be reversed')

        # Marker row makes a second reversal of the same transaction fail atomically
        marker = Put('counters', {'counterName': f"reversal#{original['transactionId']}", 'createdAt': self._now()})
        try:
            return self.post(
                wallet_id,
                -original['amount'],
                TransactionType.REVERSAL,
                reference_type='transaction',
                reference_id=original['transactionId'],
                description=reason or f"Reversal of transaction {original['transactionId']}",
                extra_writes=[marker]
            )
        except ConditionFailed:
            raise InvalidInput(f"Transaction {original['transactionId']} was already reversed")

    def plan_settlement(self, project: dict, now: str) -> tuple:
        """
        Build the paired earning and commission postings for a QC-approved project.

        Returns:
            tuple: (writes, transaction_rows)
        """
        doer_id = project.get('doerId')
        supervisor_id = project.get('supervisorId')
        if not doer_id or not supervisor_id:
            raise SettlementFailure('Settlement needs both an assigned doer and a supervisor')
        if doer_id == supervisor_id:
            raise SettlementFailure('Doer and supervisor wallets must differ')
        if project.get('doerPayout') is None or project.get('supervisorCommission') is None:
            raise SettlementFailure(f"Project {project['projectId']} has no quote to settle")

        legs = (
            (doer_id, Role.DOER, project['doerPayout'], TransactionType.PROJECT_EARNING),
            (supervisor_id, Role.SUPERVISOR, project['supervisorCommission'], TransactionType.COMMISSION),
        )
        writes = []
        rows = []
        for owner_id, role, amount, transaction_type in legs:
            if amount == 0:
                continue
            wallet = self.open_wallet(owner_id, role)
            try:
                leg_writes, _, row = self.plan_posting(
                    wallet, amount, transaction_type,
                    reference_type='project',
                    reference_id=project['projectId'],
                    description=f"{transaction_type.value} for project {project.get('projectNumber')}",
                    now=now
                )
            except (InvalidInput, InsufficientBalance) as e:
                raise SettlementFailure(f'Could not plan {transaction_type.value} posting: {e.message}') from e
            writes.extend(leg_writes)
            rows.append(row)
        return writes, rows

    def publish_posted(self, transaction: dict) -> None:
        self.ctx.fanout.publish(WALLET_POSTED, {
            'walletId': transaction['walletId'],
            'transactionId': transaction['transactionId'],
            'sequence': transaction['sequence'],
            'transactionType': transaction['transactionType'],
            'amount': transaction['amount'],
            'balanceAfter': transaction['balanceAfter'],
        }, [wallet_channel(transaction['walletId'])])

    def replay_balance(self, wallet_id: str) -> int:
        """
        Rebuild the balance from zero by walking the ledger.

        Raises InvariantViolation if any row breaks the before/after chain.
        """
        balance = 0
        for expected_sequence, row in enumerate(self.transactions(wallet_id), start=1):
            if row['sequence'] != expected_sequence:
                raise InvariantViolation(f'Wallet {wallet_id} is missing row {expected_sequence}')
            if row['balanceBefore'] != balance:
                raise InvariantViolation(
                    f"Wallet {wallet_id} row {row['sequence']} starts at {row['balanceBefore']}, expected {balance}"
                )
            if row['balanceAfter'] != row['balanceBefore'] + row['amount']:
                raise InvariantViolation(f"Wallet {wallet_id} row {row['sequence']} does not add up")
            balance = row['balanceAfter']
        return balance

    def verify(self, wallet_id: str) -> bool:
        """True when the cached wallet projection matches a full replay."""
        wallet = self.get_wallet(wallet_id)
        return (
            self.replay_balance(wallet_id) == wallet['balance']
            and wallet['balance'] == wallet['totalCredited'] - wallet['totalDebited']
            and wallet['balance'] >= 0
            and wallet.get('reserved', 0) >= 0
        )
