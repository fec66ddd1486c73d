"""
Project status transition table.

Every legal move is one entry (status, event) -> next status. Anything not in
the table is rejected with InvalidTransition.
"""
from .errors import InvalidTransition, InvariantViolation
from .models import ASSIGNED_STATES, ProjectEvent as E, ProjectStatus as S

# Statuses from which the client may cancel before any work is bought
CANCELLABLE = (S.SUBMITTED, S.ANALYZING, S.QUOTED, S.PAYMENT_PENDING, S.PAID)

# Paid statuses before a Doer has delivered billable (QC-approved) work
REFUNDABLE = (
    S.PAID, S.ASSIGNING, S.ASSIGNED, S.IN_PROGRESS, S.SUBMITTED_FOR_QC,
    S.QC_IN_PROGRESS, S.QC_REJECTED, S.REVISION_REQUESTED, S.IN_REVISION,
)

TRANSITIONS = {
    (S.DRAFT, E.SUBMIT): S.SUBMITTED,
    (S.SUBMITTED, E.START_ANALYSIS): S.ANALYZING,
    (S.ANALYZING, E.QUOTE): S.QUOTED,
    (S.QUOTED, E.REQUEST_PAYMENT): S.PAYMENT_PENDING,
    (S.PAYMENT_PENDING, E.CONFIRM_PAYMENT): S.PAID,
    (S.PAID, E.START_ASSIGNING): S.ASSIGNING,
    (S.PAID, E.CLAIM): S.ASSIGNED,
    (S.ASSIGNING, E.ASSIGN): S.ASSIGNED,
    (S.ASSIGNED, E.START_WORK): S.IN_PROGRESS,
    (S.IN_PROGRESS, E.SUBMIT_FOR_QC): S.SUBMITTED_FOR_QC,
    (S.SUBMITTED_FOR_QC, E.START_QC): S.QC_IN_PROGRESS,
    (S.SUBMITTED_FOR_QC, E.APPROVE_QC): S.QC_APPROVED,
    (S.SUBMITTED_FOR_QC, E.REJECT_QC): S.QC_REJECTED,
    (S.QC_IN_PROGRESS, E.APPROVE_QC): S.QC_APPROVED,
    (S.QC_IN_PROGRESS, E.REJECT_QC): S.QC_REJECTED,
    (S.QC_REJECTED, E.REQUEST_REVISION): S.REVISION_REQUESTED,
    (S.DELIVERED, E.REQUEST_REVISION): S.REVISION_REQUESTED,
    (S.REVISION_REQUESTED, E.START_REVISION): S.IN_REVISION,
    (S.IN_REVISION, E.SUBMIT_FOR_QC): S.SUBMITTED_FOR_QC,
    (S.QC_APPROVED, E.DELIVER): S.DELIVERED,
    (S.DELIVERED, E.COMPLETE): S.COMPLETED,
    (S.QC_APPROVED, E.AUTO_APPROVE): S.AUTO_APPROVED,
    (S.DELIVERED, E.AUTO_APPROVE): S.AUTO_APPROVED,
}
TRANSITIONS.update({(status, E.CANCEL): S.CANCELLED for status in CANCELLABLE})
TRANSITIONS.update({(status, E.REFUND): S.REFUNDED for status in REFUNDABLE})


def next_status(status, event) -> S:
    """Look up the target status, or raise InvalidTransition."""
    try:
        return TRANSITIONS[(S(status), E(event))]
    except (KeyError, ValueError):
        raise InvalidTransition(status, event)


def allowed_events(status) -> list:
    """Events accepted from a status, in table order."""
    return [event for (source, event) in TRANSITIONS if source == S(status)]


def check_assignment_invariant(project: dict) -> None:
    """A doer is bound exactly while the project is in an assigned status."""
    assigned = S(project['status']) in ASSIGNED_STATES
    if assigned != bool(project.get('doerId')):
        raise InvariantViolation(
            f"Project {project.get('projectId')} in status {project['status']} "
            f"has doerId={project.get('doerId')!r}"
        )
