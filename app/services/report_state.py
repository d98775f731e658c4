"""Report lifecycle: every legal transition in one table.

    (create) ──► draft ──submit──► submitted ──begin_review──► under_review
                   ▲                  │  │                          │
                   └──────undo────────┘  └───────grade──────┐       │
                                                            ▼       ▼
                                                           graded ◄─┘
                                                             │ ▲
                                                             └─┘ grade (re-grade)

Callers ask ``guard(report, action)`` for the target state and
``changes_for(...)`` for the field updates; they never compare status
strings themselves.  The repo persists the changes with a
compare-and-swap on the status the guard saw.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

from app.core.errors import StateConflictError, ValidationError
from app.models.report import FEEDBACK_MAX_LENGTH, Report, ReportStatus

RATING_RANGE = (1, 5)
MARKS_RANGE = (0, 100)


class ReportAction(str, Enum):
    CREATE = "create"
    CREATE_SUBMITTED = "create_submitted"
    EDIT = "edit"
    SUBMIT = "submit"
    UNDO = "undo"
    BEGIN_REVIEW = "begin_review"
    GRADE = "grade"
    DELETE = "delete"


class Actor(str, Enum):
    AUTHOR = "author"  # the intern who wrote the report
    STAFF = "staff"  # admin or owner of the report's organization


@dataclass(frozen=True, slots=True)
class Transition:
    sources: frozenset[ReportStatus | None]
    target: ReportStatus | None  # None: the report is removed
    actors: frozenset[Actor]
    conflict_message: str


_S = ReportStatus
_ANY = frozenset(ReportStatus)

TRANSITIONS: dict[ReportAction, Transition] = {
    ReportAction.CREATE: Transition(
        frozenset({None}), _S.DRAFT, frozenset({Actor.AUTHOR}), ""
    ),
    ReportAction.CREATE_SUBMITTED: Transition(
        frozenset({None}), _S.SUBMITTED, frozenset({Actor.AUTHOR}), ""
    ),
    ReportAction.EDIT: Transition(
        frozenset({_S.DRAFT}),
        _S.DRAFT,
        frozenset({Actor.AUTHOR}),
        'Can only edit reports in "draft" status. Report is "{status}".',
    ),
    ReportAction.SUBMIT: Transition(
        frozenset({_S.DRAFT}),
        _S.SUBMITTED,
        frozenset({Actor.AUTHOR}),
        'Cannot submit. Report is "{status}", not "draft".',
    ),
    ReportAction.UNDO: Transition(
        frozenset({_S.SUBMITTED}),
        _S.DRAFT,
        frozenset({Actor.AUTHOR}),
        'Cannot undo. Report is "{status}". Undo only allowed when "submitted".',
    ),
    ReportAction.BEGIN_REVIEW: Transition(
        frozenset({_S.SUBMITTED}),
        _S.UNDER_REVIEW,
        frozenset({Actor.STAFF}),
        'Cannot start review. Report is "{status}", not "submitted".',
    ),
    ReportAction.GRADE: Transition(
        frozenset({_S.SUBMITTED, _S.UNDER_REVIEW, _S.GRADED}),
        _S.GRADED,
        frozenset({Actor.STAFF}),
        'Cannot grade. Report is "{status}"; it must be submitted first.',
    ),
    # Staff may delete in any state; authors only while draft
    # (narrowed in allowed_sources).
    ReportAction.DELETE: Transition(
        _ANY,
        None,
        frozenset({Actor.AUTHOR, Actor.STAFF}),
        'Can only delete reports in "draft" status. Report is "{status}".',
    ),
}


def allowed_sources(action: ReportAction, actor: Actor) -> frozenset[ReportStatus | None]:
    sources = TRANSITIONS[action].sources
    if action is ReportAction.DELETE and actor is Actor.AUTHOR:
        return frozenset({_S.DRAFT})
    return sources


def guard(report: Report | None, action: ReportAction, actor: Actor) -> ReportStatus | None:
    """Check ``action`` is legal for ``actor`` on ``report``; return the target.

    Raises StateConflictError naming the report's current status.
    """
    transition = TRANSITIONS[action]
    if actor not in transition.actors:
        raise ValueError(f"{actor.value} cannot perform {action.value}")
    current = report.status if report is not None else None
    if current not in allowed_sources(action, actor):
        status = current.value if current is not None else "missing"
        raise StateConflictError(
            transition.conflict_message.format(status=status),
            current_status=status,
        )
    return transition.target


def conflict(action: ReportAction, status: ReportStatus) -> StateConflictError:
    """Error for a compare-and-swap that lost to a concurrent change."""
    return StateConflictError(
        TRANSITIONS[action].conflict_message.format(status=status.value),
        current_status=status.value,
    )


@dataclass(frozen=True, slots=True)
class Grade:
    rating: int | None
    marks: int | None
    feedback: str | None


def validate_grade(grade: Grade, *, first_grade: bool) -> None:
    """Range checks, run before anything is written.

    A first grade needs both rating and marks; a re-grade may omit
    either and keeps the previous value.
    """
    if first_grade:
        if grade.rating is None:
            raise ValidationError("Rating is required", field="rating")
        if grade.marks is None:
            raise ValidationError("Marks are required", field="marks")
    if grade.rating is not None:
        _check_int_range("rating", grade.rating, RATING_RANGE)
    if grade.marks is not None:
        _check_int_range("marks", grade.marks, MARKS_RANGE)
    if grade.feedback is not None and len(grade.feedback) > FEEDBACK_MAX_LENGTH:
        raise ValidationError(
            f"Feedback cannot exceed {FEEDBACK_MAX_LENGTH} characters",
            field="admin_feedback",
        )


def _check_int_range(name: str, value: Any, bounds: tuple[int, int]) -> None:
    low, high = bounds
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name.capitalize()} must be an integer", field=name)
    if not low <= value <= high:
        raise ValidationError(
            f"{name.capitalize()} must be between {low} and {high}", field=name
        )


def changes_for(
    report: Report,
    action: ReportAction,
    *,
    actor_id: UUID,
    grade: Grade | None = None,
    now: int | None = None,
) -> dict[str, Any]:
    """Field updates (status plus side effects) for a guarded transition."""
    now = now if now is not None else int(time.time())

    if action is ReportAction.SUBMIT:
        return {"status": _S.SUBMITTED, "submitted_at": now}
    if action is ReportAction.UNDO:
        return {"status": _S.DRAFT, "submitted_at": None}
    if action is ReportAction.BEGIN_REVIEW:
        return {"status": _S.UNDER_REVIEW, "reviewed_by": actor_id}
    if action is ReportAction.GRADE:
        if grade is None:
            raise ValueError("grade is required for GRADE")
        changes: dict[str, Any] = {
            "status": _S.GRADED,
            "rating": grade.rating if grade.rating is not None else report.rating,
            "marks": grade.marks if grade.marks is not None else report.marks,
            "reviewed_by": actor_id,
            "reviewed_at": now,
        }
        if grade.feedback is not None or report.status is not _S.GRADED:
            changes["admin_feedback"] = grade.feedback
        return changes
    raise ValueError(f"{action.value} has no field changes")
