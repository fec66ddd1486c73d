"""
Authentication utilities for extracting the caller from Cognito tokens.
"""
from typing import Optional

from .models import Actor, Role

# Most privileged group wins when a user belongs to several
ROLE_PRECEDENCE = (Role.ADMIN, Role.SUPERVISOR, Role.DOER, Role.USER)


def get_user_sub(event: dict) -> Optional[str]:
    """
    Extract user sub (unique ID) from Cognito authorizer claims.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User sub string or None if not authenticated
    """
    try:
        return event['requestContext']['authorizer']['claims']['sub']
    except (KeyError, TypeError):
        return None


def get_user_groups(event: dict) -> list:
    """Extract user groups (user, doer, supervisor, admin) from Cognito claims."""
    try:
        groups = event['requestContext']['authorizer']['claims'].get('cognito:groups', '')
        if isinstance(groups, str):
            return groups.split(',') if groups else []
        return groups or []
    except (KeyError, TypeError, AttributeError):
        return []


def get_actor(event: dict) -> Optional[Actor]:
    """Build the Actor for the caller, or None if unauthenticated or without a role."""
    sub = get_user_sub(event)
    if not sub:
        return None
    groups = get_user_groups(event)
    for role in ROLE_PRECEDENCE:
        if role in groups:
            return Actor(actor_id=sub, role=role)
    return None
