"""
Confirm Payout Handler.
POST /admin/payouts/{payoutId}/confirm
Body: { "externalReference": "PAYOUT-123" }            on success
      { "failed": true, "reason": "Invalid bank account" }  on provider rejection
"""
from shared.auth import get_actor
from shared.context import build_context
from shared.errors import CoreError
from shared.logging import logger, log_event
from shared.payouts import PayoutService
from shared.utils import error_response, format_response, get_path_param, parse_body

payouts = PayoutService(build_context())


def handler(event, context):
    log_event(event)

    try:
        actor = get_actor(event)
        if actor is None:
            return format_response(401, {'message': 'Unauthorized'})

        payout_id = get_path_param(event, 'payoutId')
        if not payout_id:
            return format_response(400, {'message': 'Missing payoutId'})

        body = parse_body(event)
        if body.get('failed'):
            payout = payouts.fail_payout(payout_id, body.get('reason') or 'Rejected by provider', actor)
            return format_response(200, {
                'message': 'Payout marked as failed',
                'payoutId': payout_id,
                'status': payout['status']
            })

        transaction = payouts.confirm_payout(payout_id, body.get('externalReference'), actor)

        return format_response(200, {
            'message': 'Payout confirmed',
            'payoutId': payout_id,
            'transactionId': transaction['transactionId'],
            'newBalance': transaction['balanceAfter']
        })

    except CoreError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error confirming payout: {e}")
        return format_response(500, {'message': 'Internal Server Error'})
