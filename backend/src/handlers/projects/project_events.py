"""
Project Events Handler.
POST /projects/{projectId}/events
Body: { "event": "deliver", ...event specific fields }

Routes the lifecycle commands that have no dedicated endpoint.
"""
from shared.auth import get_actor
from shared.context import build_context
from shared.errors import CoreError
from shared.lifecycle import ProjectLifecycle
from shared.logging import logger, log_event
from shared.models import ProjectEvent
from shared.utils import error_response, format_response, get_path_param, parse_body

lifecycle = ProjectLifecycle(build_context())

COMMANDS = {
    ProjectEvent.SUBMIT: lambda pid, actor, body: lifecycle.submit(pid, actor),
    ProjectEvent.START_ANALYSIS: lambda pid, actor, body: lifecycle.start_analysis(pid, actor),
    ProjectEvent.REQUEST_PAYMENT: lambda pid, actor, body: lifecycle.request_payment(pid, actor),
    ProjectEvent.CONFIRM_PAYMENT: lambda pid, actor, body: lifecycle.confirm_payment(
        pid, actor, body.get('paymentReference')),
    ProjectEvent.START_ASSIGNING: lambda pid, actor, body: lifecycle.start_assigning(pid, actor),
    ProjectEvent.ASSIGN: lambda pid, actor, body: lifecycle.assign_doer(pid, body.get('doerId'), actor),
    ProjectEvent.START_WORK: lambda pid, actor, body: lifecycle.start_work(pid, actor),
    ProjectEvent.START_QC: lambda pid, actor, body: lifecycle.start_qc(pid, actor),
    ProjectEvent.DELIVER: lambda pid, actor, body: lifecycle.deliver(pid, actor),
    ProjectEvent.REQUEST_REVISION: lambda pid, actor, body: lifecycle.request_revision(
        pid, actor, body.get('feedback'), body.get('severity')),
    ProjectEvent.START_REVISION: lambda pid, actor, body: lifecycle.start_revision(pid, actor),
    ProjectEvent.COMPLETE: lambda pid, actor, body: lifecycle.complete(pid, actor),
    ProjectEvent.CANCEL: lambda pid, actor, body: lifecycle.cancel(pid, actor, body.get('reason')),
    ProjectEvent.REFUND: lambda pid, actor, body: lifecycle.refund(pid, actor, body.get('reason')),
}


def handler(event, context):
    log_event(event)

    try:
        actor = get_actor(event)
        if actor is None:
            return format_response(401, {'message': 'Unauthorized'})

        project_id = get_path_param(event, 'projectId')
        body = parse_body(event)

        try:
            command = COMMANDS[ProjectEvent(body.get('event'))]
        except (KeyError, ValueError):
            return format_response(400, {'message': f"Unsupported event: {body.get('event')}"})

        if not project_id:
            return format_response(400, {'message': 'Missing projectId'})

        project = command(project_id, actor, body)

        return format_response(200, {
            'projectId': project['projectId'],
            'status': project['status'],
            'statusUpdatedAt': project['statusUpdatedAt'],
            'revisionCount': project.get('revisionCount', 0)
        })

    except CoreError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Error applying project event: {e}")
        return format_response(500, {'message': 'Internal Server Error'})
