"""
Logging for Lambda handlers and the settlement core.
Every module logs through the one 'marketplace' logger.
"""
import logging
import json
import os

logger = logging.getLogger('marketplace')
logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO').upper())

if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(handler)

# Request fields that are safe to log; bodies and headers can carry payment details
EVENT_FIELDS = ('httpMethod', 'resource', 'path', 'pathParameters', 'queryStringParameters')


def log_event(event: dict) -> None:
    """Log the routing part of an API Gateway event and the caller's id."""
    try:
        summary = {k: event.get(k) for k in EVENT_FIELDS if event.get(k) is not None}
        request_context = event.get('requestContext') or {}
        summary['requestId'] = request_context.get('requestId')
        claims = (request_context.get('authorizer') or {}).get('claims') or {}
        summary['caller'] = claims.get('sub')
        logger.info(f"Lambda event: {json.dumps(summary, default=str)}")
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Could not log event: {e}")
