"""
Submit For QC Handler.
POST /doer/projects/{projectId}/submit
Body: { "deliverables": ["s3://bucket/key.docx"] }
"""
from shared.auth import get_actor
from shared.context import build_context
from shared.errors import CoreError
from shared.lifecycle import ProjectLifecycle
from shared.logging import logger, log_event
from shared.models import Role
from shared.utils import error_response, format_response, get_path_param, parse_body

lifecycle = ProjectLifecycle(build_context())


def handler(event, context):
    log_event(event)

    try:
        actor = get_actor(event)
        if actor is None or actor.role != Role.DOER:
            return format_response(403, {'message': 'Only doers can submit work'})

        project_id = get_path_param(event, 'projectId')
        if not project_id:
            return format_response(400, {'message': 'Missing projectId'})

        deliverables = parse_body(event).get('deliverables') or []
        if not isinstance(deliverables, list):
            return format_response(400, {'message': 'deliverables must be a list of file references'})

        project = lifecycle.submit_for_qc(project_id, actor.actor_id, deliverables, actor)

        return format_response(200, {
            'message': 'Work submitted for QC',
            'projectId': project_id,
            'status': project['status']
        })

    except CoreError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error submitting work: {e}")
        return format_response(500, {'message': 'Internal Server Error'})
