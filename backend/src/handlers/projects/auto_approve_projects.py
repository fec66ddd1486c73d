"""
Auto-Approve Projects Handler.
Triggered by EventBridge scheduler to close projects whose review window ran out.
"""
from shared.context import build_context
from shared.lifecycle import ProjectLifecycle
from shared.logging import logger

lifecycle = ProjectLifecycle(build_context())


def handler(event, context):
    """
    Scheduled handler; should be triggered hourly by EventBridge.
    Projects delivered (or QC-approved) longer than AUTO_APPROVE_HOURS ago
    move to auto_approved.
    """
    logger.info("Running auto-approve check...")

    approved = lifecycle.auto_approve_due()

    return {
        'autoApproved': len(approved),
        'projectIds': approved
    }
