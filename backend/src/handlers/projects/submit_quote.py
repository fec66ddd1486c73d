"""
Submit Quote Handler.
POST /supervisor/projects/{projectId}/quote
Body: { "wordCount": 2000, "pageCount": 0, "urgencyHours": 20, "complexity": "medium", "basis": "words" }
"""
from shared.auth import get_actor
from shared.context import build_context
from shared.errors import CoreError
from shared.lifecycle import ProjectLifecycle
from shared.logging import logger, log_event
from shared.utils import error_response, format_response, get_path_param, parse_body

lifecycle = ProjectLifecycle(build_context())


def handler(event, context):
    log_event(event)

    try:
        actor = get_actor(event)
        if actor is None:
            return format_response(401, {'message': 'Unauthorized'})

        project_id = get_path_param(event, 'projectId')
        body = parse_body(event)
        complexity = body.get('complexity')

        if not project_id or not complexity:
            return format_response(400, {'message': 'Missing projectId or complexity'})

        quote = lifecycle.submit_quote(
            project_id,
            word_count=body.get('wordCount'),
            page_count=body.get('pageCount'),
            urgency_hours=body.get('urgencyHours'),
            complexity=complexity,
            actor=actor,
            basis=body.get('basis')
        )

        return format_response(200, {
            'message': 'Quote submitted',
            'projectId': project_id,
            'quote': quote
        })

    except CoreError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error submitting quote: {e}")
        return format_response(500, {'message': 'Internal Server Error'})
