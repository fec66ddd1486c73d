"""
Claim Project Handler.
POST /doer/projects/{projectId}/claim

Exactly one Doer wins a pool project; losers get 409 and should pick another.
"""
from shared.auth import get_actor
from shared.context import build_context
from shared.errors import AlreadyAssigned, CoreError
from shared.lifecycle import ProjectLifecycle
from shared.logging import logger, log_event
from shared.utils import error_response, format_response, get_path_param

lifecycle = ProjectLifecycle(build_context())


def handler(event, context):
    log_event(event)

    try:
        actor = get_actor(event)
        if actor is None:
            return format_response(401, {'message': 'Unauthorized'})

        project_id = get_path_param(event, 'projectId')
        if not project_id:
            return format_response(400, {'message': 'Missing projectId'})

        project = lifecycle.claim_project(project_id, actor.actor_id, actor)

        return format_response(200, {
            'message': 'Task assigned successfully',
            'projectId': project['projectId'],
            'projectNumber': project.get('projectNumber'),
            'doerAssignedAt': project['doerAssignedAt'],
            'status': project['status']
        })

    except AlreadyAssigned as e:
        return format_response(409, {**e.to_dict(), 'message': 'This task was just taken'})
    except CoreError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error claiming project: {e}")
        return format_response(500, {'message': 'Internal Server Error'})
