"""
Data models and status constants for the marketplace.
Based on the project lifecycle:
Draft → Submitted → Analyzing → Quoted → Paid → Assigned → In Progress → QC → Delivered → Completed
"""
from dataclasses import dataclass
from enum import Enum


class ProjectStatus(str, Enum):
    """Project lifecycle statuses."""
    DRAFT = 'draft'
    SUBMITTED = 'submitted'
    ANALYZING = 'analyzing'
    QUOTED = 'quoted'
    PAYMENT_PENDING = 'payment_pending'
    PAID = 'paid'
    ASSIGNING = 'assigning'
    ASSIGNED = 'assigned'
    IN_PROGRESS = 'in_progress'
    SUBMITTED_FOR_QC = 'submitted_for_qc'
    QC_IN_PROGRESS = 'qc_in_progress'
    QC_APPROVED = 'qc_approved'
    QC_REJECTED = 'qc_rejected'
    DELIVERED = 'delivered'
    REVISION_REQUESTED = 'revision_requested'
    IN_REVISION = 'in_revision'
    COMPLETED = 'completed'
    AUTO_APPROVED = 'auto_approved'
    CANCELLED = 'cancelled'
    REFUNDED = 'refunded'


# Statuses in which a Doer must be bound to the project (and only these)
ASSIGNED_STATES = frozenset({
    ProjectStatus.ASSIGNED,
    ProjectStatus.IN_PROGRESS,
    ProjectStatus.SUBMITTED_FOR_QC,
    ProjectStatus.QC_IN_PROGRESS,
    ProjectStatus.QC_APPROVED,
    ProjectStatus.QC_REJECTED,
    ProjectStatus.DELIVERED,
    ProjectStatus.REVISION_REQUESTED,
    ProjectStatus.IN_REVISION,
    ProjectStatus.COMPLETED,
    ProjectStatus.AUTO_APPROVED,
})

TERMINAL_STATES = frozenset({
    ProjectStatus.COMPLETED,
    ProjectStatus.AUTO_APPROVED,
    ProjectStatus.CANCELLED,
    ProjectStatus.REFUNDED,
})


class ProjectEvent(str, Enum):
    """Commands that move a project between statuses."""
    SUBMIT = 'submit'
    START_ANALYSIS = 'start_analysis'
    QUOTE = 'quote'
    REQUEST_PAYMENT = 'request_payment'
    CONFIRM_PAYMENT = 'confirm_payment'
    START_ASSIGNING = 'start_assigning'
    ASSIGN = 'assign'
    CLAIM = 'claim'
    START_WORK = 'start_work'
    SUBMIT_FOR_QC = 'submit_for_qc'
    START_QC = 'start_qc'
    APPROVE_QC = 'approve_qc'
    REJECT_QC = 'reject_qc'
    REQUEST_REVISION = 'request_revision'
    START_REVISION = 'start_revision'
    DELIVER = 'deliver'
    COMPLETE = 'complete'
    AUTO_APPROVE = 'auto_approve'
    CANCEL = 'cancel'
    REFUND = 'refund'


class ServiceType(str, Enum):
    """Supported service types."""
    NEW_PROJECT = 'new_project'
    PROOFREADING = 'proofreading'
    PLAGIARISM_CHECK = 'plagiarism_check'
    AI_DETECTION = 'ai_detection'
    EXPERT_OPINION = 'expert_opinion'


class Complexity(str, Enum):
    EASY = 'easy'
    MEDIUM = 'medium'
    HARD = 'hard'


class Severity(str, Enum):
    """Severity of a QC rejection or revision request."""
    MINOR = 'minor'
    MAJOR = 'major'
    CRITICAL = 'critical'


class RevisionStatus:
    """Revision statuses."""
    PENDING = 'pending'
    RESOLVED = 'resolved'


class QCDecision(str, Enum):
    APPROVE = 'approve'
    REJECT = 'reject'


class Role:
    """Actor roles, as carried in Cognito groups."""
    USER = 'user'
    DOER = 'doer'
    SUPERVISOR = 'supervisor'
    ADMIN = 'admin'
    SYSTEM = 'system'


class TransactionType(str, Enum):
    """Transaction types for wallet ledger rows."""
    CREDIT = 'credit'
    DEBIT = 'debit'
    REFUND = 'refund'
    WITHDRAWAL = 'withdrawal'
    TOP_UP = 'top_up'
    PROJECT_EARNING = 'project_earning'
    COMMISSION = 'commission'
    BONUS = 'bonus'
    PENALTY = 'penalty'
    REVERSAL = 'reversal'


CREDIT_TYPES = frozenset({
    TransactionType.CREDIT,
    TransactionType.REFUND,
    TransactionType.TOP_UP,
    TransactionType.PROJECT_EARNING,
    TransactionType.COMMISSION,
    TransactionType.BONUS,
})

DEBIT_TYPES = frozenset({
    TransactionType.DEBIT,
    TransactionType.WITHDRAWAL,
    TransactionType.PENALTY,
})


class TransactionStatus:
    COMPLETED = 'completed'


class PayoutStatus:
    """Payout request statuses."""
    PENDING = 'pending'
    COMPLETED = 'completed'
    FAILED = 'failed'


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, supplied by the session/auth collaborator."""
    actor_id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


SYSTEM_ACTOR = Actor(actor_id='system', role=Role.SYSTEM)
