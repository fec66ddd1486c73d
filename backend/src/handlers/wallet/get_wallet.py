"""
Get Wallet Handler.
GET /wallet
"""
from shared.auth import get_actor
from shared.context import build_context
from shared.errors import NotFound
from shared.ledger import WalletLedger
from shared.logging import logger, log_event
from shared.payouts import PayoutService
from shared.utils import format_response, get_query_param

core_context = build_context()
ledger = WalletLedger(core_context)
payouts = PayoutService(core_context)


def handler(event, context):
    """
    Handler to get the caller's wallet, recent ledger rows and payouts.
    GET /wallet?limit=20
    """
    log_event(event)

    try:
        actor = get_actor(event)
        if actor is None:
            return format_response(401, {'message': 'Unauthorized'})

        try:
            wallet = ledger.get_wallet(actor.actor_id)
        except NotFound:
            return format_response(200, {
                'walletId': actor.actor_id,
                'balance': 0,
                'availableBalance': 0,
                'transactions': [],
                'payouts': []
            })

        try:
            limit = int(get_query_param(event, 'limit', '20'))
        except ValueError:
            return format_response(400, {'message': 'limit must be a number'})
        if limit < 1:
            return format_response(400, {'message': 'limit must be at least 1'})

        transactions = ledger.transactions(wallet['walletId'])[-limit:]
        transactions.reverse()

        return format_response(200, {
            'walletId': wallet['walletId'],
            'balance': wallet['balance'],
            'availableBalance': payouts.available_balance(wallet),
            'reserved': wallet.get('reserved', 0),
            'totalCredited': wallet['totalCredited'],
            'totalDebited': wallet['totalDebited'],
            'totalWithdrawn': wallet['totalWithdrawn'],
            'currency': wallet['currency'],
            'transactions': transactions,
            'payouts': payouts.payouts(wallet['walletId'])
        })

    except Exception as e:
        logger.exception(f"Error getting wallet: {e}")
        return format_response(500, {'message': 'Internal Server Error'})
