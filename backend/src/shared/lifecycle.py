"""
Project lifecycle - validated status transitions and the commands built on them.

Each command reads the project, computes the next state through the
transition table, and commits the project update, its history rows and any
revision or wallet writes in one conditional transaction guarded by the
status and version that were read. Events are published only after commit.
"""
import uuid
from datetime import timedelta
from typing import Callable, Iterable, List, Optional

from . import pricing
from .broker import AssignmentBroker
from .errors import (
    Forbidden,
    InvalidInput,
    InvalidTransition,
    NotFound,
    SettlementFailure,
)
from .events import (
    POOL_CHANNEL,
    PROJECT_AVAILABLE,
    PROJECT_STATUS_CHANGED,
    project_channels,
)
from .ledger import WalletLedger
from .logging import logger
from .models import (
    SYSTEM_ACTOR,
    Actor,
    ProjectEvent as E,
    ProjectStatus as S,
    QCDecision,
    RevisionStatus,
    Role,
    ServiceType,
    Severity,
)
from .statemachine import check_assignment_invariant, next_status
from .store import ConditionFailed, Put, Update
from .utils import parse_iso, to_iso


class ProjectLifecycle:

    def __init__(self, ctx):
        self.ctx = ctx
        self.store = ctx.store
        self.broker = AssignmentBroker(ctx)
        self.ledger = WalletLedger(ctx)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_project(self, project_id: str) -> dict:
        project = self.store.get('projects', {'projectId': project_id})
        if project is None:
            raise NotFound(f'Project {project_id} not found')
        return project

    def history(self, project_id: str) -> list:
        return self.store.query('project_history', project_id)

    def revisions(self, project_id: str) -> list:
        return self.store.query('revisions', project_id)

    def pool(self) -> list:
        """Paid, unassigned projects, soonest deadline first."""
        projects = self.store.query_index('projects', 'status', S.PAID.value)
        open_projects = [p for p in projects if not p.get('doerId')]
        open_projects.sort(key=lambda p: p.get('deadline') or '')
        return open_projects

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    def create_project(self, actor: Actor, fields: dict) -> dict:
        """Record a new draft project from the intake form fields."""
        if actor.role != Role.USER:
            raise Forbidden('Only users can create projects')

        title = (fields.get('title') or '').strip()
        if not title:
            raise InvalidInput('Missing title')
        try:
            service_type = ServiceType(fields.get('serviceType', ServiceType.NEW_PROJECT.value))
        except ValueError:
            raise InvalidInput(f"Unknown service type: {fields.get('serviceType')}")
        try:
            deadline = to_iso(parse_iso(fields['deadline']))
        except (KeyError, TypeError, ValueError):
            raise InvalidInput('Missing or invalid deadline')

        word_count = pricing.to_count(fields.get('wordCount'), 'wordCount')
        page_count = pricing.to_count(fields.get('pageCount'), 'pageCount')

        number = self.store.increment('counters', {'counterName': 'projectNumber'}, 'value')
        now = self._now()
        project = {
            'projectId': str(uuid.uuid4()),
            'projectNumber': f'PRJ-{number:06d}',
            'title': title,
            'subject': fields.get('subject'),
            'serviceType': service_type.value,
            'wordCount': word_count,
            'pageCount': page_count,
            'deadline': deadline,
            'userId': actor.actor_id,
            'supervisorId': None,
            'doerId': None,
            'userQuote': None,
            'doerPayout': None,
            'supervisorCommission': None,
            'platformFee': None,
            'status': S.DRAFT.value,
            'statusUpdatedAt': now,
            'revisionCount': 0,
            'historyCount': 0,
            'version': 0,
            'deliverables': [],
            'createdAt': now,
        }
        self.store.put('projects', project)
        logger.info(f"Created project {project['projectNumber']} for user {actor.actor_id}")
        return project

    def submit(self, project_id: str, actor: Actor) -> dict:
        return self._run(project_id, E.SUBMIT, actor, authorize=_owning_user)

    # ------------------------------------------------------------------
    # Quoting and payment
    # ------------------------------------------------------------------

    def start_analysis(self, project_id: str, actor: Actor) -> dict:
        """A Supervisor picks up the submitted project and becomes its supervisor."""
        if actor.role != Role.SUPERVISOR:
            raise Forbidden('Only supervisors can analyze projects')
        return self._run(
            project_id, E.START_ANALYSIS, actor,
            changes=lambda project, now: {'supervisorId': actor.actor_id, 'supervisorAssignedAt': now}
        )

    def submit_quote(
        self,
        project_id: str,
        word_count: Optional[int],
        page_count: Optional[int],
        urgency_hours,
        complexity,
        actor: Actor,
        basis: str = None
    ) -> dict:
        """
        Price an analyzed project and move it to 'quoted'.

        When urgency_hours is None it is derived from the project deadline.

        Returns:
            The quote written onto the project
        """
        project = self.get_project(project_id)
        _project_supervisor(project, actor)
        next_status(project['status'], E.QUOTE)

        if urgency_hours is None:
            remaining = parse_iso(project['deadline']) - self.ctx.clock()
            urgency_hours = remaining.total_seconds() / 3600

        quote = pricing.quote(word_count, page_count, urgency_hours, complexity, self.ctx.settings, basis)
        logger.info(
            f"Quote for {project.get('projectNumber')}: {quote['userQuote']} "
            f"(basis={quote['pricingBasis']}, urgency x{quote['urgencyMultiplier']}, "
            f"complexity x{quote['complexityMultiplier']})"
        )

        self._run(
            project_id, E.QUOTE, actor,
            authorize=_project_supervisor,
            changes=lambda p, now: {
                **quote,
                'wordCount': pricing.to_count(word_count, 'wordCount'),
                'pageCount': pricing.to_count(page_count, 'pageCount'),
                'quotedAt': now,
            }
        )
        return quote

    def request_payment(self, project_id: str, actor: Actor) -> dict:
        return self._run(project_id, E.REQUEST_PAYMENT, actor, authorize=_owning_user)

    def confirm_payment(self, project_id: str, actor: Actor, payment_reference: str = None) -> dict:
        """Record the payment collaborator's confirmation; the project enters the pool."""
        if actor.role not in (Role.ADMIN, Role.SYSTEM):
            raise Forbidden('Payments are confirmed by the payment system')
        return self._run(
            project_id, E.CONFIRM_PAYMENT, actor,
            changes=lambda p, now: {'paidAt': now, 'isPaid': True, 'paymentReference': payment_reference}
        )

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def start_assigning(self, project_id: str, actor: Actor) -> dict:
        return self._run(project_id, E.START_ASSIGNING, actor, authorize=_project_supervisor)

    def assign_doer(self, project_id: str, doer_id: str, actor: Actor) -> dict:
        _project_supervisor(self.get_project(project_id), actor)
        return self.broker.assign(project_id, doer_id, actor)

    def claim_project(self, project_id: str, doer_id: str, actor: Actor = None) -> dict:
        return self.broker.claim(project_id, doer_id, actor)

    # ------------------------------------------------------------------
    # Work and QC
    # ------------------------------------------------------------------

    def start_work(self, project_id: str, actor: Actor) -> dict:
        return self._run(project_id, E.START_WORK, actor, authorize=_assigned_doer)

    def start_revision(self, project_id: str, actor: Actor) -> dict:
        return self._run(project_id, E.START_REVISION, actor, authorize=_assigned_doer)

    def submit_for_qc(self, project_id: str, doer_id: str, deliverables: Iterable[str] = (), actor: Actor = None) -> dict:
        """
        Hand work to QC. Deliverables are opaque file references; their
        contents are never inspected here.
        """
        actor = actor or Actor(doer_id, Role.DOER)
        if actor.role == Role.DOER and actor.actor_id != doer_id:
            raise Forbidden('Doers can only submit their own work')

        def authorize(project, actor):
            if project.get('doerId') != doer_id:
                raise Forbidden('Project is not assigned to this doer')

        def resolve_revision(project, after, now):
            if project['status'] != S.IN_REVISION.value or not project.get('revisionCount'):
                return []
            return [Update(
                'revisions',
                {'projectId': project_id, 'revisionNumber': project['revisionCount']},
                values={'status': RevisionStatus.RESOLVED, 'resolvedAt': now},
                expected={'status': RevisionStatus.PENDING}
            )]

        return self._run(
            project_id, E.SUBMIT_FOR_QC, actor,
            authorize=authorize,
            changes=lambda p, now: {
                'submittedForQcAt': now,
                'deliverables': list(p.get('deliverables') or []) + list(deliverables),
            },
            extra_writes=resolve_revision
        )

    def start_qc(self, project_id: str, actor: Actor) -> dict:
        return self._run(project_id, E.START_QC, actor, authorize=_project_supervisor)

    def decide_qc(
        self,
        project_id: str,
        decision,
        actor: Actor,
        feedback: Optional[str] = None,
        severity=None
    ) -> dict:
        """
        Approve or reject work under QC.

        approve: qc_approved, plus the paired doer earning and supervisor
        commission postings in the same transaction.
        reject: qc_rejected then revision_requested, plus a new Revision row.
        """
        try:
            decision = QCDecision(decision)
        except ValueError:
            raise InvalidInput(f'Unknown QC decision: {decision}')

        if decision == QCDecision.APPROVE:
            if severity is not None:
                raise InvalidInput('Severity only applies to rejections')
            return self._approve(project_id, actor)
        return self._request_changes(project_id, actor, feedback, severity, E.REJECT_QC)

    def _approve(self, project_id: str, actor: Actor) -> dict:
        attempts = self.ctx.settings.LEDGER_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            project = self.get_project(project_id)
            _project_supervisor(project, actor)
            now = self._now()
            after, row = self._step(project, E.APPROVE_QC, actor, now, {
                'qcApprovedAt': now,
                'autoApproveAt': None,
            })

            settlement_writes, postings = [], []
            if not project.get('settledAt'):
                settlement_writes, postings = self.ledger.plan_settlement(after, now)
                after['settledAt'] = now

            try:
                self._commit(project, after, [row], settlement_writes)
            except ConditionFailed as e:
                if e.index is None or e.index <= 1:
                    raise self._lost(project_id, E.APPROVE_QC)
                logger.warning(f"Wallet conflict settling {project_id} (attempt {attempt}/{attempts})")
                continue

            logger.info(f"Project {project.get('projectNumber')} approved; settled {len(postings)} postings")
            self._publish_transition(project, after)
            for posting in postings:
                self.ledger.publish_posted(posting)
            return after

        raise SettlementFailure(f'Could not settle project {project_id}: wallets kept changing')

    def _request_changes(self, project_id: str, actor: Actor, feedback: Optional[str], severity, event: E) -> dict:
        """Shared by QC rejection and the user's post-delivery revision request."""
        if not feedback or not feedback.strip():
            raise InvalidInput('Feedback is required when requesting changes')
        try:
            severity = Severity(severity or Severity.MINOR)
        except ValueError:
            raise InvalidInput(f'Unknown severity: {severity}')

        project = self.get_project(project_id)
        if event == E.REJECT_QC:
            _project_supervisor(project, actor)
            requested_by_role = Role.SUPERVISOR
        else:
            _owning_user(project, actor)
            requested_by_role = Role.USER

        now = self._now()
        revision_number = project.get('revisionCount', 0) + 1
        changes = {
            'revisionCount': revision_number,
            'latestFeedback': feedback,
            'latestSeverity': severity.value,
            'autoApproveAt': None,
        }
        meta = {'revisionNumber': revision_number, 'severity': severity.value}

        rows = []
        after = project
        if event == E.REJECT_QC:
            after, row = self._step(after, E.REJECT_QC, actor, now, changes, meta)
            rows.append(row)
            changes = None
        after, row = self._step(after, E.REQUEST_REVISION, actor, now, changes, meta)
        rows.append(row)

        revision = {
            'projectId': project_id,
            'revisionNumber': revision_number,
            'requestedBy': actor.actor_id,
            'requestedByRole': requested_by_role,
            'feedback': feedback,
            'severity': severity.value,
            'status': RevisionStatus.PENDING,
            'createdAt': now,
            'resolvedAt': None,
        }

        try:
            self._commit(project, after, rows, [Put('revisions', revision)])
        except ConditionFailed:
            raise self._lost(project_id, event)

        logger.info(
            f"Revision {revision_number} requested on {project.get('projectNumber')} "
            f"by {requested_by_role} ({severity.value})"
        )
        self._publish_transition(project, after, {
            'revisionNumber': revision_number,
            'feedback': feedback,
            'severity': severity.value,
        })
        return after

    # ------------------------------------------------------------------
    # Delivery and closing
    # ------------------------------------------------------------------

    def deliver(self, project_id: str, actor: Actor) -> dict:
        return self._run(
            project_id, E.DELIVER, actor,
            authorize=_project_supervisor,
            changes=lambda p, now: {
                'deliveredAt': now,
                'autoApproveAt': self._auto_approve_at(parse_iso(now)),
            }
        )

    def request_revision(self, project_id: str, actor: Actor, feedback: str, severity=None) -> dict:
        """The user asks for changes after delivery."""
        return self._request_changes(project_id, actor, feedback, severity, E.REQUEST_REVISION)

    def complete(self, project_id: str, actor: Actor) -> dict:
        return self._run(
            project_id, E.COMPLETE, actor,
            authorize=_owning_user,
            changes=lambda p, now: {'completedAt': now, 'userApproved': True, 'userApprovedAt': now, 'autoApproveAt': None}
        )

    def auto_approve_due(self) -> List[str]:
        """
        Auto-approve projects whose review window has run out.
        Driven by the scheduler; the only time-based transition.

        Returns:
            IDs of the projects that were auto-approved
        """
        moment = self.ctx.clock()
        approved = []
        for project in self.store.query_index('projects', 'status', S.DELIVERED.value):
            due = project.get('autoApproveAt')
            if not due or parse_iso(due) > moment:
                continue
            try:
                self._run(
                    project['projectId'], E.AUTO_APPROVE, SYSTEM_ACTOR,
                    authorize=_still_due(moment),
                    changes=lambda p, now: {'completedAt': now, 'autoApproveAt': None}
                )
                approved.append(project['projectId'])
            except InvalidTransition as e:
                # The client acted between the scan and the write
                logger.info(f"Skipped auto-approval of {project['projectId']}: {e.message}")
        logger.info(f"Auto-approved {len(approved)} projects")
        return approved

    def cancel(self, project_id: str, actor: Actor, reason: str = None) -> dict:
        def authorize(project, actor):
            if actor.is_admin or actor.actor_id in (project.get('userId'), project.get('supervisorId')):
                return
            raise Forbidden('Not authorized to cancel this project')

        return self._run(
            project_id, E.CANCEL, actor,
            authorize=authorize,
            changes=lambda p, now: {
                'cancelledAt': now,
                'cancelledBy': actor.actor_id,
                'cancellationReason': reason,
                'doerId': None,
            }
        )

    def refund(self, project_id: str, actor: Actor, reason: str = None) -> dict:
        """Refund a paid project before billable work was approved. Releases the doer."""
        return self._run(
            project_id, E.REFUND, actor,
            authorize=_project_supervisor,
            changes=lambda p, now: {
                'refundedAt': now,
                'refundReason': reason,
                'doerId': None,
                'doerAssignedAt': None,
            },
            metadata=lambda p: {'previousDoerId': p.get('doerId')}
        )

    # ------------------------------------------------------------------
    # Transition machinery
    # ------------------------------------------------------------------

    def _now(self) -> str:
        return to_iso(self.ctx.clock())

    def _auto_approve_at(self, moment) -> str:
        return to_iso(moment + timedelta(hours=self.ctx.settings.AUTO_APPROVE_HOURS))

    def _step(self, project: dict, event: E, actor: Actor, now: str, changes: dict = None, metadata: dict = None) -> tuple:
        """
        Apply one table transition to a copy of the project.

        Returns:
            tuple: (updated_project, history_row)
        """
        target = next_status(project['status'], event)
        after = dict(project)
        after.update(changes or {})
        after['status'] = target.value
        after['statusUpdatedAt'] = now
        after['historyCount'] = project.get('historyCount', 0) + 1
        check_assignment_invariant(after)

        row = {
            'projectId': project['projectId'],
            'sequence': after['historyCount'],
            'fromStatus': project['status'],
            'toStatus': target.value,
            'event': event.value,
            'changedBy': actor.actor_id,
            'changedByRole': actor.role,
            'createdAt': now,
            'metadata': metadata or {},
        }
        return after, row

    def _commit(self, before: dict, after: dict, history_rows: list, extra_writes=()) -> None:
        """Write project, history and extra writes atomically, guarded by status and version."""
        after['version'] = before.get('version', 0) + 1
        changed = {
            k: v for k, v in after.items()
            if k != 'projectId' and (k not in before or before[k] != v)
        }
        writes = [Update(
            'projects',
            {'projectId': before['projectId']},
            values=changed,
            expected={'status': before['status'], 'version': before.get('version', 0)}
        )]
        writes.extend(Put('project_history', row) for row in history_rows)
        writes.extend(extra_writes)
        self.store.transact(writes)

    def _run(
        self,
        project_id: str,
        event: E,
        actor: Actor,
        authorize: Callable[..., None] = None,
        changes: Callable[[dict, str], dict] = None,
        metadata: Callable[[dict], dict] = None,
        extra_writes: Callable[[dict, dict, str], list] = None
    ) -> dict:
        project = self.get_project(project_id)
        if authorize:
            authorize(project, actor)
        now = self._now()
        after, row = self._step(
            project, event, actor, now,
            changes(project, now) if changes else None,
            metadata(project) if metadata else None
        )
        extra = extra_writes(project, after, now) if extra_writes else []
        try:
            self._commit(project, after, [row], extra)
        except ConditionFailed:
            raise self._lost(project_id, event)

        logger.info(f"Project {project.get('projectNumber')}: {project['status']} -> {after['status']}")
        self._publish_transition(project, after)
        return after

    def _lost(self, project_id: str, event: E) -> InvalidTransition:
        """The project changed between read and write; report its current status."""
        current = self.get_project(project_id)
        logger.info(f"Lost race on {project_id} for {event.value}; now {current['status']}")
        return InvalidTransition(current['status'], event)

    def _publish_transition(self, before: dict, after: dict, extra: dict = None) -> None:
        payload = {
            'projectId': after['projectId'],
            'projectNumber': after.get('projectNumber'),
            'old': before['status'],
            'new': after['status'],
            **(extra or {}),
        }
        channels = project_channels(after) + project_channels(before)
        if S.PAID.value in (before['status'], after['status']):
            channels.append(POOL_CHANNEL)
        self.ctx.fanout.publish(PROJECT_STATUS_CHANGED, payload, channels)

        if after['status'] == S.PAID.value:
            self.ctx.fanout.publish(PROJECT_AVAILABLE, {
                'projectId': after['projectId'],
                'projectNumber': after.get('projectNumber'),
                'deadline': after.get('deadline'),
                'doerPayout': after.get('doerPayout'),
            }, [POOL_CHANNEL])


# ----------------------------------------------------------------------
# Authorization checks, called as authorize(project, actor)
# ----------------------------------------------------------------------

def _owning_user(project: dict, actor: Actor) -> None:
    if actor.is_admin:
        return
    if actor.role != Role.USER or actor.actor_id != project.get('userId'):
        raise Forbidden('Only the project owner can do this')


def _project_supervisor(project: dict, actor: Actor) -> None:
    if actor.is_admin:
        return
    if actor.role != Role.SUPERVISOR or actor.actor_id != project.get('supervisorId'):
        raise Forbidden("Only the project's supervisor can do this")


def _assigned_doer(project: dict, actor: Actor) -> None:
    if actor.role != Role.DOER or actor.actor_id != project.get('doerId'):
        raise Forbidden('Project is not assigned to this doer')


def _still_due(moment):
    def authorize(project: dict, actor: Actor) -> None:
        if actor.role != Role.SYSTEM:
            raise Forbidden('Auto-approval is scheduler-driven')
        due = project.get('autoApproveAt')
        if not due or parse_iso(due) > moment:
            raise InvalidTransition(project['status'], E.AUTO_APPROVE, 'Review window has not elapsed')
    return authorize
