"""
Request Payout Handler.
POST /wallet/payouts
Body: { "amount": 1500 }

Only reserves funds; the withdrawal is posted once the payout is confirmed.
"""
from shared.auth import get_actor
from shared.context import build_context
from shared.errors import CoreError, InsufficientBalance
from shared.logging import logger, log_event
from shared.payouts import PayoutService
from shared.utils import error_response, format_response, parse_body

payouts = PayoutService(build_context())


def handler(event, context):
    log_event(event)

    try:
        actor = get_actor(event)
        if actor is None:
            return format_response(401, {'message': 'Unauthorized'})

        amount = parse_body(event).get('amount')
        if amount is None:
            return format_response(400, {'message': 'Missing amount'})
        if not isinstance(amount, int):
            return format_response(400, {'message': 'Amount must be a whole number'})

        payout = payouts.request_payout(actor.actor_id, amount, actor)

        return format_response(201, {
            'message': 'Payout requested',
            'payoutId': payout['payoutId'],
            'amount': payout['requestedAmount'],
            'status': payout['status']
        })

    except InsufficientBalance as e:
        return format_response(400, {
            **e.to_dict(),
            'message': f'Insufficient balance: you need {e.shortfall} more to withdraw {e.requested}'
        })
    except CoreError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error requesting payout: {e}")
        return format_response(500, {'message': 'Internal Server Error'})
