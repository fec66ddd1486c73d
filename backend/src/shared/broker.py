"""
Assignment broker - binds exactly one Doer to a project.

The bind is a single conditional update (status is the claimable status AND
doerId is null), so concurrent claims are serialized by the store: one wins,
every other caller gets AlreadyAssigned or NotClaimable. Callers must refetch
before trying again; the broker never retries on their behalf.
"""
from .errors import AlreadyAssigned, Forbidden, NotClaimable, NotFound
from .events import (
    POOL_CHANNEL,
    PROJECT_ASSIGNED,
    PROJECT_STATUS_CHANGED,
    doer_channel,
    project_channels,
    supervisor_channel,
)
from .logging import logger
from .models import ProjectEvent, ProjectStatus, Role
from .statemachine import next_status
from .store import ConditionFailed, Put, Update
from .utils import to_iso


class AssignmentBroker:

    def __init__(self, ctx):
        self.ctx = ctx
        self.store = ctx.store

    def claim(self, project_id: str, doer_id: str, actor=None) -> dict:
        """
        Claim a pool project (status 'paid', no doer) for a Doer.

        Returns:
            The assigned project
        Raises:
            AlreadyAssigned: another Doer holds the project
            NotClaimable: the project left the pool (e.g. cancelled)
        """
        if actor is not None and actor.role != Role.DOER and not actor.is_admin:
            raise Forbidden('Only doers can claim pool projects')
        if actor is not None and actor.role == Role.DOER and actor.actor_id != doer_id:
            raise Forbidden('Doers can only claim projects for themselves')
        return self._bind(project_id, doer_id, ProjectStatus.PAID, ProjectEvent.CLAIM, actor)

    def assign(self, project_id: str, doer_id: str, actor) -> dict:
        """Supervisor-driven assignment of a project in 'assigning'."""
        if actor.role != Role.SUPERVISOR and not actor.is_admin:
            raise Forbidden('Only supervisors can assign doers')
        return self._bind(project_id, doer_id, ProjectStatus.ASSIGNING, ProjectEvent.ASSIGN, actor)

    def _bind(self, project_id: str, doer_id: str, from_status: ProjectStatus, event: ProjectEvent, actor) -> dict:
        project = self.store.get('projects', {'projectId': project_id})
        if project is None:
            raise NotFound(f'Project {project_id} not found')

        to_status = next_status(from_status, event)
        now = to_iso(self.ctx.clock())
        sequence = project.get('historyCount', 0) + 1

        writes = [
            Update(
                'projects',
                {'projectId': project_id},
                values={
                    'doerId': doer_id,
                    'doerAssignedAt': now,
                    'status': to_status.value,
                    'statusUpdatedAt': now,
                    'historyCount': sequence,
                    'version': project.get('version', 0) + 1,
                },
                expected={'status': from_status.value, 'doerId': None, 'version': project.get('version', 0)}
            ),
            Put('project_history', {
                'projectId': project_id,
                'sequence': sequence,
                'fromStatus': from_status.value,
                'toStatus': to_status.value,
                'event': event.value,
                'changedBy': actor.actor_id if actor else doer_id,
                'changedByRole': actor.role if actor else Role.DOER,
                'createdAt': now,
                'metadata': {'doerId': doer_id},
            }),
        ]

        try:
            self.store.transact(writes)
        except ConditionFailed:
            raise self._classify_loss(project_id, from_status)

        project.update(writes[0].values)
        logger.info(f"Project {project_id} {event.value}ed by doer {doer_id}")
        self._publish(project, from_status)
        return project

    def _classify_loss(self, project_id: str, from_status: ProjectStatus) -> Exception:
        """Re-read once to tell the caller why the bind lost. Never retries."""
        current = self.store.get('projects', {'projectId': project_id})
        if current is not None and current.get('doerId'):
            logger.info(f"Claim on {project_id} lost: already assigned to {current['doerId']}")
            return AlreadyAssigned()
        status = current.get('status') if current else 'missing'
        logger.info(f"Claim on {project_id} rejected: status is {status}")
        if status == from_status.value:
            return NotClaimable('Project changed while claiming, refresh and try again')
        return NotClaimable(f'Project is no longer available (status: {status})')

    def _publish(self, project: dict, from_status: ProjectStatus) -> None:
        payload = {
            'projectId': project['projectId'],
            'projectNumber': project.get('projectNumber'),
            'doerId': project['doerId'],
            'status': project['status'],
        }
        channels = [doer_channel(project['doerId']), POOL_CHANNEL]
        if project.get('supervisorId'):
            channels.append(supervisor_channel(project['supervisorId']))
        self.ctx.fanout.publish(PROJECT_ASSIGNED, payload, channels)
        self.ctx.fanout.publish(PROJECT_STATUS_CHANGED, {
            'projectId': project['projectId'],
            'old': from_status.value,
            'new': project['status'],
        }, project_channels(project))
