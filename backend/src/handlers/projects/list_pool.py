"""
List Pool Handler.
GET /doer/pool

Returns paid projects no Doer has claimed yet, soonest deadline first.
"""
from shared.auth import get_actor
from shared.context import build_context
from shared.lifecycle import ProjectLifecycle
from shared.logging import logger, log_event
from shared.models import Role
from shared.utils import format_response

lifecycle = ProjectLifecycle(build_context())

# Fields a Doer may see before claiming
POOL_FIELDS = (
    'projectId', 'projectNumber', 'title', 'subject', 'serviceType',
    'wordCount', 'pageCount', 'deadline', 'doerPayout', 'supervisorId',
)


def handler(event, context):
    log_event(event)

    try:
        actor = get_actor(event)
        if actor is None or actor.role not in (Role.DOER, Role.ADMIN):
            return format_response(403, {'message': 'Only doers can view the pool'})

        projects = [
            {field: project.get(field) for field in POOL_FIELDS}
            for project in lifecycle.pool()
        ]

        return format_response(200, {
            'projects': projects,
            'total': len(projects)
        })

    except Exception as e:
        logger.exception(f"Error listing pool: {e}")
        return format_response(500, {'message': 'Internal Server Error'})
