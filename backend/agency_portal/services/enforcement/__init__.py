"""
Enforcement Case Services

Statutory enforcement lifecycle for registered childminders:
suspension, warning notices, and cancellation of registration.

- EnforcementService: orchestration and transactions
- CaseStateMachine: per-type status transitions
- DeadlineEngine / DeadlineScheduler: statutory dates and the daily sweep
- Workflows: step-gated suspension/warning, cancellation, review, decision
- NotificationDispatcher: regulator notifications
"""

from .state_machine import CaseStateMachine, CaseTransitionError
from .deadlines import DeadlineEngine, DeadlineScheduler
from .repository import CaseRepository, CaseNotFoundError
from .workflows import (
    WorkflowValidationError,
    SuspensionWorkflow,
    CancellationWorkflow,
    SuspensionReviewWorkflow,
    DecisionWorkflow,
    RepresentationsWorkflow,
)
from .notifications import NotificationDispatcher, NotificationError
from .case_service import EnforcementService

__all__ = [
    'CaseStateMachine',
    'CaseTransitionError',
    'DeadlineEngine',
    'DeadlineScheduler',
    'CaseRepository',
    'CaseNotFoundError',
    'WorkflowValidationError',
    'SuspensionWorkflow',
    'CancellationWorkflow',
    'SuspensionReviewWorkflow',
    'DecisionWorkflow',
    'RepresentationsWorkflow',
    'NotificationDispatcher',
    'NotificationError',
    'EnforcementService',
]
