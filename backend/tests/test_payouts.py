"""
Tests for payout requests against wallet balances.
"""
import pytest

from conftest import ADMIN, DOER_A, DOER_B
from shared.errors import Forbidden, InsufficientBalance, InvalidInput, InvalidTransition, NotFound
from shared.models import SYSTEM_ACTOR, Role, TransactionType
from shared.store import MemoryStore


class InterleavingStore(MemoryStore):
    """Runs `before_payout_write` once, just before the first payout write lands."""

    before_payout_write = None

    def transact(self, writes):
        hook = self.before_payout_write
        if hook and any(write.table == 'payouts' for write in writes):
            self.before_payout_write = None
            hook()
        super().transact(writes)


@pytest.fixture
def funded(ledger):
    """doer-a's wallet holding one project earning of 4680."""
    ledger.open_wallet('doer-a', Role.DOER)
    ledger.post('doer-a', 4680, TransactionType.PROJECT_EARNING, 'project', 'p-1')
    return 'doer-a'


class TestRequestPayout:

    def test_over_balance_is_refused(self, payouts, ledger, funded):
        with pytest.raises(InsufficientBalance) as exc_info:
            payouts.request_payout(funded, 5000, DOER_A)

        assert exc_info.value.shortfall == 320
        assert exc_info.value.balance == 4680
        assert ledger.get_wallet(funded)['balance'] == 4680
        assert len(ledger.transactions(funded)) == 1
        assert payouts.payouts(funded) == []

    def test_request_reserves_without_posting(self, payouts, ledger, funded):
        payout = payouts.request_payout(funded, 1000, DOER_A)

        assert payout['status'] == 'pending'
        assert payout['requestedAmount'] == 1000
        assert payout['requesterRole'] == 'doer'
        wallet = ledger.get_wallet(funded)
        assert wallet['balance'] == 4680
        assert payouts.available_balance(wallet) == 3680
        assert len(ledger.transactions(funded)) == 1

    def test_reservations_count_against_new_requests(self, payouts, funded):
        payouts.request_payout(funded, 4000, DOER_A)

        with pytest.raises(InsufficientBalance) as exc_info:
            payouts.request_payout(funded, 1000, DOER_A)

        assert exc_info.value.balance == 680
        assert exc_info.value.shortfall == 320

    def test_below_minimum(self, payouts, funded):
        with pytest.raises(InvalidInput):
            payouts.request_payout(funded, 499, DOER_A)

    @pytest.mark.parametrize('amount', [0, -100, 750.5, '1000', True])
    def test_malformed_amount(self, payouts, funded, amount):
        with pytest.raises(InvalidInput):
            payouts.request_payout(funded, amount, DOER_A)

    def test_only_owner_or_admin(self, payouts, funded):
        with pytest.raises(Forbidden):
            payouts.request_payout(funded, 1000, DOER_B)

        assert payouts.request_payout(funded, 1000, ADMIN)['status'] == 'pending'

    def test_unknown_wallet(self, payouts):
        with pytest.raises(NotFound):
            payouts.request_payout('nobody', 1000, DOER_A)


class TestConfirmPayout:

    def test_confirm_posts_withdrawal(self, payouts, ledger, funded):
        payout = payouts.request_payout(funded, 1000, DOER_A)

        transaction = payouts.confirm_payout(payout['payoutId'], 'UTR-889201', ADMIN)

        assert transaction['transactionType'] == 'withdrawal'
        assert transaction['amount'] == -1000
        assert transaction['referenceId'] == payout['payoutId']
        wallet = ledger.get_wallet(funded)
        assert wallet['balance'] == 3680
        assert wallet['totalWithdrawn'] == 1000
        assert wallet['reserved'] == 0
        assert payouts.available_balance(wallet) == 3680

        closed = payouts.get_payout(payout['payoutId'])
        assert closed['status'] == 'completed'
        assert closed['externalReference'] == 'UTR-889201'
        assert ledger.verify(funded) is True

    def test_confirm_only_once(self, payouts, ledger, funded):
        payout = payouts.request_payout(funded, 1000, DOER_A)
        payouts.confirm_payout(payout['payoutId'], 'UTR-1', SYSTEM_ACTOR)

        with pytest.raises(InvalidTransition):
            payouts.confirm_payout(payout['payoutId'], 'UTR-2', SYSTEM_ACTOR)

        withdrawals = [t for t in ledger.transactions(funded) if t['transactionType'] == 'withdrawal']
        assert len(withdrawals) == 1

    def test_balance_spent_since_request(self, payouts, ledger, funded):
        """A penalty posted after the request leaves too little to pay out."""
        payout = payouts.request_payout(funded, 4000, DOER_A)
        ledger.post(funded, -1000, TransactionType.PENALTY)

        with pytest.raises(InsufficientBalance):
            payouts.confirm_payout(payout['payoutId'], 'UTR-3', ADMIN)

        assert payouts.get_payout(payout['payoutId'])['status'] == 'pending'
        assert ledger.get_wallet(funded)['balance'] == 3680

    def test_requires_payments_operator(self, payouts, funded):
        payout = payouts.request_payout(funded, 1000, DOER_A)

        with pytest.raises(Forbidden):
            payouts.confirm_payout(payout['payoutId'], 'UTR-4', DOER_A)

    def test_requires_reference(self, payouts, funded):
        payout = payouts.request_payout(funded, 1000, DOER_A)

        with pytest.raises(InvalidInput):
            payouts.confirm_payout(payout['payoutId'], '', ADMIN)


class TestFailPayout:

    def test_failure_releases_reservation(self, payouts, ledger, funded):
        payout = payouts.request_payout(funded, 4000, DOER_A)

        failed = payouts.fail_payout(payout['payoutId'], 'Bank account closed', ADMIN)

        assert failed['status'] == 'failed'
        assert failed['failureReason'] == 'Bank account closed'
        assert payouts.available_balance(ledger.get_wallet(funded)) == 4680
        assert len(ledger.transactions(funded)) == 1

    def test_cannot_fail_confirmed_payout(self, payouts, funded):
        payout = payouts.request_payout(funded, 1000, DOER_A)
        payouts.confirm_payout(payout['payoutId'], 'UTR-5', ADMIN)

        with pytest.raises(InvalidTransition):
            payouts.fail_payout(payout['payoutId'], 'Late bounce', ADMIN)

    def test_unknown_payout(self, payouts):
        with pytest.raises(NotFound):
            payouts.fail_payout('missing', 'n/a', ADMIN)


class TestConcurrentRequests:

    @pytest.fixture
    def store(self):
        return InterleavingStore()

    def test_interleaved_requests_cannot_over_reserve(self, store, payouts, ledger, funded):
        won = []
        store.before_payout_write = lambda: won.append(payouts.request_payout(funded, 4000, DOER_A))

        with pytest.raises(InsufficientBalance) as exc_info:
            payouts.request_payout(funded, 4000, DOER_A)

        assert exc_info.value.balance == 680
        pending = [p['requestedAmount'] for p in payouts.payouts(funded) if p['status'] == 'pending']
        assert pending == [4000]
        assert payouts.payouts(funded)[0]['payoutId'] == won[0]['payoutId']
        wallet = ledger.get_wallet(funded)
        assert wallet['reserved'] == 4000
        assert payouts.available_balance(wallet) == 680

    def test_posting_during_request_is_rechecked(self, store, payouts, ledger, funded):
        store.before_payout_write = lambda: ledger.post(funded, -1000, TransactionType.PENALTY)

        with pytest.raises(InsufficientBalance):
            payouts.request_payout(funded, 4000, DOER_A)

        wallet = ledger.get_wallet(funded)
        assert wallet['reserved'] == 0
        assert payouts.payouts(funded) == []

    def test_both_fit_when_balance_allows(self, store, payouts, ledger, funded):
        store.before_payout_write = lambda: payouts.request_payout(funded, 2000, DOER_A)

        payouts.request_payout(funded, 2000, DOER_A)

        wallet = ledger.get_wallet(funded)
        assert wallet['reserved'] == 4000
        assert len(payouts.payouts(funded)) == 2

    def test_failing_one_frees_room_for_another(self, payouts, ledger, funded):
        first = payouts.request_payout(funded, 4000, DOER_A)
        payouts.fail_payout(first['payoutId'], 'Bank account closed', ADMIN)

        second = payouts.request_payout(funded, 4000, DOER_A)
        payouts.confirm_payout(second['payoutId'], 'UTR-7', ADMIN)

        wallet = ledger.get_wallet(funded)
        assert wallet['balance'] == 680
        assert wallet['reserved'] == 0
        assert ledger.verify(funded) is True
