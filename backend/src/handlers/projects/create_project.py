"""
Create Project Handler.
POST /user/projects
Body: { "title": "...", "subject": "...", "serviceType": "proofreading",
        "wordCount": 2000, "pageCount": 0, "deadline": "2026-11-01T12:00:00Z", "submit": true }
"""
from shared.auth import get_actor
from shared.context import build_context
from shared.errors import CoreError
from shared.lifecycle import ProjectLifecycle
from shared.logging import logger, log_event
from shared.utils import error_response, format_response, parse_body

lifecycle = ProjectLifecycle(build_context())


def handler(event, context):
    log_event(event)

    try:
        actor = get_actor(event)
        if actor is None:
            return format_response(401, {'message': 'Unauthorized'})

        body = parse_body(event)
        project = lifecycle.create_project(actor, body)

        # Intake forms submit straight away unless saved as a draft
        if body.get('submit', True):
            project = lifecycle.submit(project['projectId'], actor)

        return format_response(201, {
            'message': 'Project created',
            'projectId': project['projectId'],
            'projectNumber': project['projectNumber'],
            'status': project['status']
        })

    except CoreError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error creating project: {e}")
        return format_response(500, {'message': 'Internal Server Error'})
