"""
Payout requests.

A request only reserves funds: the wallet's `reserved` counter grows in the
same transaction that records the request. The withdrawal debit is posted
when the external payout is confirmed, in the same transaction that closes
the request and releases its reservation, so the ledger never records money
that has not left.
"""
import uuid

from .errors import (
    Forbidden,
    InsufficientBalance,
    InvalidInput,
    InvalidTransition,
    InvariantViolation,
    NotFound,
    WriteConflict,
)
from .ledger import WalletLedger
from .logging import logger
from .models import Actor, PayoutStatus, Role, TransactionType
from .store import ConditionFailed, Put, Update
from .utils import to_iso


class PayoutService:

    def __init__(self, ctx):
        self.ctx = ctx
        self.store = ctx.store
        self.ledger = WalletLedger(ctx)

    def get_payout(self, payout_id: str) -> dict:
        payout = self.store.get('payouts', {'payoutId': payout_id})
        if payout is None:
            raise NotFound(f'Payout {payout_id} not found')
        return payout

    def payouts(self, wallet_id: str) -> list:
        payouts = self.store.query_index('payouts', 'walletId', wallet_id)
        payouts.sort(key=lambda p: p['createdAt'])
        return payouts

    def available_balance(self, wallet: dict) -> int:
        """Balance minus what pending payout requests already reserve."""
        return wallet['balance'] - wallet.get('reserved', 0)

    def _reservation(self, wallet: dict, change: int, now: str) -> Update:
        reserved = wallet.get('reserved', 0)
        return Update(
            'wallets',
            {'walletId': wallet['walletId']},
            values={'reserved': reserved + change, 'updatedAt': now},
            expected={'version': wallet['version'], 'reserved': reserved}
        )

    def request_payout(self, wallet_id: str, amount: int, actor: Actor = None) -> dict:
        """
        Open a payout request for a wallet.

        The reservation is written against the wallet version and reservation
        that the availability check read; a concurrent posting or request
        makes the write fail and the check runs again on a fresh read.

        Raises:
            InsufficientBalance: amount exceeds the available balance (carries the shortfall)
            InvalidInput: amount is not a positive whole number or is below the minimum
            WriteConflict: the wallet kept changing for LEDGER_MAX_ATTEMPTS reads
        """
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise InvalidInput('Amount must be a positive whole number')

        attempts = self.ctx.settings.LEDGER_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            wallet = self.ledger.get_wallet(wallet_id)
            if actor is not None and not actor.is_admin and actor.actor_id != wallet['ownerId']:
                raise Forbidden('Not authorized for this wallet')

            available = self.available_balance(wallet)
            if amount > available:
                logger.info(f"Payout of {amount} from {wallet_id} refused: available {available}")
                raise InsufficientBalance(available, amount)

            minimum = self.ctx.settings.MINIMUM_WITHDRAWAL
            if amount < minimum:
                raise InvalidInput(f'Minimum withdrawal is {minimum}')

            now = to_iso(self.ctx.clock())
            payout = {
                'payoutId': str(uuid.uuid4()),
                'walletId': wallet_id,
                'requesterRole': wallet.get('ownerRole'),
                'requestedAmount': amount,
                'status': PayoutStatus.PENDING,
                'externalReference': None,
                'failureReason': None,
                'createdAt': now,
                'updatedAt': now,
            }
            try:
                self.store.transact([self._reservation(wallet, amount, now), Put('payouts', payout)])
            except ConditionFailed as e:
                if e.index != 0:
                    raise
                logger.warning(f"Wallet {wallet_id} changed during payout request (attempt {attempt}/{attempts})")
                continue

            logger.info(f"Payout {payout['payoutId']} requested: {amount} from {wallet_id}")
            return payout

        raise WriteConflict(f'Could not reserve {amount} on wallet {wallet_id} after {attempts} attempts')

    def confirm_payout(self, payout_id: str, external_reference: str, actor: Actor) -> dict:
        """
        Record that the external payout went through and post the withdrawal.

        Returns:
            The withdrawal transaction row
        """
        _payments_operator(actor)
        if not external_reference:
            raise InvalidInput('Missing external payout reference')

        payout = self.get_payout(payout_id)
        if payout['status'] != PayoutStatus.PENDING:
            raise InvalidTransition(payout['status'], 'confirm_payout')

        now = to_iso(self.ctx.clock())
        close = Update(
            'payouts',
            {'payoutId': payout_id},
            values={
                'status': PayoutStatus.COMPLETED,
                'externalReference': external_reference,
                'confirmedAt': now,
                'updatedAt': now,
            },
            expected={'status': PayoutStatus.PENDING}
        )
        try:
            transaction = self.ledger.post(
                payout['walletId'],
                -payout['requestedAmount'],
                TransactionType.WITHDRAWAL,
                reference_type='payout',
                reference_id=payout_id,
                description=f'Payout {external_reference}',
                extra_writes=[close],
                release=payout['requestedAmount']
            )
        except ConditionFailed:
            raise InvalidTransition(self.get_payout(payout_id)['status'], 'confirm_payout')
        except InvariantViolation:
            # The reservation is gone when the payout was closed concurrently
            status = self.get_payout(payout_id)['status']
            if status == PayoutStatus.PENDING:
                raise
            raise InvalidTransition(status, 'confirm_payout')

        logger.info(f"Payout {payout_id} confirmed ({external_reference})")
        return transaction

    def fail_payout(self, payout_id: str, reason: str, actor: Actor) -> dict:
        """Close a payout that the external provider rejected. Nothing is posted."""
        _payments_operator(actor)
        payout = self.get_payout(payout_id)
        if payout['status'] != PayoutStatus.PENDING:
            raise InvalidTransition(payout['status'], 'fail_payout')

        attempts = self.ctx.settings.LEDGER_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            wallet = self.ledger.get_wallet(payout['walletId'])
            now = to_iso(self.ctx.clock())
            close = Update(
                'payouts', {'payoutId': payout_id},
                values={'status': PayoutStatus.FAILED, 'failureReason': reason, 'updatedAt': now},
                expected={'status': PayoutStatus.PENDING}
            )
            try:
                self.store.transact([close, self._reservation(wallet, -payout['requestedAmount'], now)])
            except ConditionFailed as e:
                if e.index == 0:
                    raise InvalidTransition(self.get_payout(payout_id)['status'], 'fail_payout')
                logger.warning(f"Wallet {wallet['walletId']} changed while failing payout {payout_id} (attempt {attempt}/{attempts})")
                continue

            logger.info(f"Payout {payout_id} failed: {reason}")
            return self.get_payout(payout_id)

        raise WriteConflict(f'Could not release payout {payout_id} after {attempts} attempts')


def _payments_operator(actor: Actor) -> None:
    if actor.role not in (Role.ADMIN, Role.SYSTEM):
        raise Forbidden('Only the payments operator can settle payouts')
