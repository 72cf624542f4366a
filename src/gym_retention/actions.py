# src/gym_retention/actions.py
"""
Retention action recommendation and the lifecycle of persisted actions.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from .config import RiskThresholds
from .errors import NotFoundError, ValidationError
from .models import (
    ActionStatus,
    ActionType,
    FactorType,
    Level,
    RecommendedAction,
    RetentionAction,
    RiskAssessment,
)
from .risk_scoring import DEFAULT_THRESHOLDS, reconcile
from .store import RecordStore

logger = logging.getLogger(__name__)

TIER_DEFAULTS: dict[Level, tuple[RecommendedAction, ...]] = {
    Level.HIGH: (
        RecommendedAction(
            "call", ActionType.CALL, "Call the member to understand their needs", 1
        ),
        RecommendedAction(
            "discount_offer", ActionType.DISCOUNT, "Offer 20% off the next monthly fee", 2
        ),
    ),
    Level.MEDIUM: (
        RecommendedAction(
            "personal_message", ActionType.MESSAGE, "Send a personalized encouragement message", 1
        ),
        RecommendedAction(
            "free_trial_class", ActionType.FREE_CLASS, "Offer a free trial class", 2
        ),
    ),
    Level.LOW: (
        RecommendedAction(
            "newsletter", ActionType.OTHER, "Send the newsletter with the latest gym news", 3
        ),
    ),
}

# Allowed moves out of the non-terminal statuses.
TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PENDING: frozenset({ActionStatus.IN_PROGRESS, ActionStatus.CANCELLED}),
    ActionStatus.IN_PROGRESS: frozenset({ActionStatus.COMPLETED, ActionStatus.CANCELLED}),
}


def recommend_actions(
    assessment: RiskAssessment, thresholds: RiskThresholds = DEFAULT_THRESHOLDS
) -> list[RecommendedAction]:
    """Tier defaults plus factor-specific additions, sorted by priority.

    A repeated code keeps its first position and its most urgent priority.
    The sort is stable, so tier defaults stay ahead of factor actions with the same priority.
    """
    canonical = reconcile(assessment, thresholds)
    candidates = list(TIER_DEFAULTS[canonical.risk_tier])

    for factor in canonical.factors:
        high = factor.impact is Level.HIGH
        if factor.type is FactorType.ATTENDANCE and high:
            candidates.append(
                RecommendedAction(
                    "attendance_reminder",
                    ActionType.MESSAGE,
                    "Send a reminder about the benefits of regular attendance",
                    1,
                )
            )
        elif factor.type is FactorType.PAYMENT:
            candidates.append(
                RecommendedAction(
                    "payment_reminder",
                    ActionType.MESSAGE,
                    "Send a friendly reminder about the pending payment",
                    1 if high else 2,
                )
            )
        elif factor.type is FactorType.FEEDBACK:
            candidates.append(
                RecommendedAction(
                    "feedback_request",
                    ActionType.MESSAGE,
                    "Ask for detailed feedback to improve their experience",
                    2 if high else 3,
                )
            )

    position: dict[str, int] = {}
    unique: list[RecommendedAction] = []
    for action in candidates:
        if action.code not in position:
            position[action.code] = len(unique)
            unique.append(action)
        elif action.priority < unique[position[action.code]].priority:
            unique[position[action.code]] = action

    return sorted(unique, key=lambda a: a.priority)


def create_action(
    store: RecordStore,
    member_id: str,
    action_type: ActionType | str,
    description: str,
    now: datetime,
    assessment_id: str | None = None,
    priority: int = 2,
) -> RetentionAction:
    """Persist a chosen action with status pending."""
    parsed_type = ActionType.parse(action_type, "action_type")
    if not description or not description.strip():
        raise ValidationError("description", "must not be empty")
    if store.get_member(member_id) is None:
        raise NotFoundError("member", member_id)
    if assessment_id is not None:
        assessment = store.get_assessment(assessment_id)
        if assessment is None or assessment.member_id != str(member_id):
            raise NotFoundError("assessment", assessment_id)

    action = RetentionAction(
        member_id=str(member_id),
        assessment_id=assessment_id,
        action_type=parsed_type,
        description=description.strip(),
        priority=priority,
        created_at=now,
    )
    store.add_action(action)
    logger.info("Created %s action %s for member %s", parsed_type.value, action.id, member_id)
    return action


def update_action_status(
    store: RecordStore, action_id: str, status: ActionStatus | str, now: datetime
) -> RetentionAction:
    """Apply a status transition, stamping completion time on completion."""
    target = ActionStatus.parse(status, "status")
    action = store.get_action(action_id)
    if action is None:
        raise NotFoundError("action", action_id)

    if target is action.status:
        return action
    if action.status.is_terminal:
        raise ValidationError("status", f"action is already {action.status.value}")
    if target not in TRANSITIONS[action.status]:
        raise ValidationError(
            "status", f"cannot move action from '{action.status.value}' to '{target.value}'"
        )

    updated = replace(
        action,
        status=target,
        completed_at=now if target is ActionStatus.COMPLETED else None,
    )
    return store.save_action(updated)


def list_actions(
    store: RecordStore, member_id: str | None = None, status: ActionStatus | str | None = None
) -> list[RetentionAction]:
    parsed = ActionStatus.parse(status, "status") if status is not None else None
    return store.actions(member_id=member_id, status=parsed)
