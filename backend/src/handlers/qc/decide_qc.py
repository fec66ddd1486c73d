"""
QC Decision Handler.
POST /supervisor/projects/{projectId}/qc
Body: { "decision": "approve" }
      { "decision": "reject", "feedback": "...", "severity": "major" }

Approval settles the doer earning and supervisor commission atomically.
"""
from shared.auth import get_actor
from shared.context import build_context
from shared.errors import CoreError
from shared.lifecycle import ProjectLifecycle
from shared.logging import logger, log_event
from shared.models import QCDecision
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
        decision = body.get('decision')

        if not project_id or not decision:
            return format_response(400, {'message': 'Missing projectId or decision'})

        project = lifecycle.decide_qc(
            project_id,
            decision,
            actor,
            feedback=body.get('feedback'),
            severity=body.get('severity')
        )

        response = {
            'projectId': project_id,
            'status': project['status'],
            'revisionCount': project.get('revisionCount', 0)
        }
        if decision == QCDecision.REJECT.value:
            response.update({
                'message': 'Revision requested',
                'feedback': project.get('latestFeedback'),
                'severity': project.get('latestSeverity')
            })
        else:
            response['message'] = 'Work approved'

        return format_response(200, response)

    except CoreError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error deciding QC: {e}")
        return format_response(500, {'message': 'Internal Server Error'})
