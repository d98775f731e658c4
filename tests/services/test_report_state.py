"""Transition table tests for the report lifecycle.

Every (action, actor, status) combination is checked against the
expected target, so a new row in TRANSITIONS cannot silently widen what
an intern or reviewer is allowed to do.
"""

from __future__ import annotations

from dataclasses import replace
from uuid import uuid4

import pytest

from app.core.errors import StateConflictError, ValidationError
from app.models.report import Report, ReportStatus, ReportType
from app.services.report_state import (
    Actor,
    Grade,
    ReportAction,
    changes_for,
    conflict,
    guard,
    validate_grade,
)

_S = ReportStatus


def _report(status: ReportStatus = _S.DRAFT) -> Report:
    report = Report.new(
        organization_id=uuid4(),
        intern_id=uuid4(),
        type=ReportType.DAILY,
        summary="Fixed flaky CI job",
    )
    return replace(report, status=status)


# (action, actor, status, expected target or None for a conflict)
_LEGAL = [
    (ReportAction.EDIT, Actor.AUTHOR, _S.DRAFT, _S.DRAFT),
    (ReportAction.SUBMIT, Actor.AUTHOR, _S.DRAFT, _S.SUBMITTED),
    (ReportAction.UNDO, Actor.AUTHOR, _S.SUBMITTED, _S.DRAFT),
    (ReportAction.BEGIN_REVIEW, Actor.STAFF, _S.SUBMITTED, _S.UNDER_REVIEW),
    (ReportAction.GRADE, Actor.STAFF, _S.SUBMITTED, _S.GRADED),
    (ReportAction.GRADE, Actor.STAFF, _S.UNDER_REVIEW, _S.GRADED),
    (ReportAction.GRADE, Actor.STAFF, _S.GRADED, _S.GRADED),
    (ReportAction.DELETE, Actor.AUTHOR, _S.DRAFT, None),
    (ReportAction.DELETE, Actor.STAFF, _S.DRAFT, None),
    (ReportAction.DELETE, Actor.STAFF, _S.SUBMITTED, None),
    (ReportAction.DELETE, Actor.STAFF, _S.UNDER_REVIEW, None),
    (ReportAction.DELETE, Actor.STAFF, _S.GRADED, None),
]

_ILLEGAL = [
    (ReportAction.EDIT, Actor.AUTHOR, _S.SUBMITTED),
    (ReportAction.EDIT, Actor.AUTHOR, _S.UNDER_REVIEW),
    (ReportAction.EDIT, Actor.AUTHOR, _S.GRADED),
    (ReportAction.SUBMIT, Actor.AUTHOR, _S.SUBMITTED),
    (ReportAction.SUBMIT, Actor.AUTHOR, _S.GRADED),
    (ReportAction.UNDO, Actor.AUTHOR, _S.DRAFT),
    (ReportAction.UNDO, Actor.AUTHOR, _S.UNDER_REVIEW),
    (ReportAction.UNDO, Actor.AUTHOR, _S.GRADED),
    (ReportAction.BEGIN_REVIEW, Actor.STAFF, _S.DRAFT),
    (ReportAction.BEGIN_REVIEW, Actor.STAFF, _S.UNDER_REVIEW),
    (ReportAction.BEGIN_REVIEW, Actor.STAFF, _S.GRADED),
    (ReportAction.GRADE, Actor.STAFF, _S.DRAFT),
    (ReportAction.DELETE, Actor.AUTHOR, _S.SUBMITTED),
    (ReportAction.DELETE, Actor.AUTHOR, _S.UNDER_REVIEW),
    (ReportAction.DELETE, Actor.AUTHOR, _S.GRADED),
]


@pytest.mark.parametrize(
    "action,actor,status,target",
    _LEGAL,
    ids=[f"{a.value}-{r.value}-{s.value}" for a, r, s, _ in _LEGAL],
)
def test_legal_transitions(action, actor, status, target) -> None:
    assert guard(_report(status), action, actor) is target


@pytest.mark.parametrize(
    "action,actor,status",
    _ILLEGAL,
    ids=[f"{a.value}-{r.value}-{s.value}" for a, r, s in _ILLEGAL],
)
def test_illegal_transitions_name_current_status(action, actor, status) -> None:
    with pytest.raises(StateConflictError) as exc_info:
        guard(_report(status), action, actor)
    assert exc_info.value.current_status == status.value
    assert f'"{status.value}"' in exc_info.value.message


def test_create_targets_draft_or_submitted() -> None:
    assert guard(None, ReportAction.CREATE, Actor.AUTHOR) is _S.DRAFT
    assert guard(None, ReportAction.CREATE_SUBMITTED, Actor.AUTHOR) is _S.SUBMITTED


def test_wrong_actor_is_a_programming_error() -> None:
    with pytest.raises(ValueError):
        guard(_report(_S.SUBMITTED), ReportAction.GRADE, Actor.AUTHOR)
    with pytest.raises(ValueError):
        guard(_report(_S.DRAFT), ReportAction.SUBMIT, Actor.STAFF)


def test_undo_conflict_message() -> None:
    with pytest.raises(StateConflictError) as exc_info:
        guard(_report(_S.UNDER_REVIEW), ReportAction.UNDO, Actor.AUTHOR)
    assert exc_info.value.message == (
        'Cannot undo. Report is "under_review". Undo only allowed when "submitted".'
    )


def test_conflict_helper_reports_persisted_status() -> None:
    err = conflict(ReportAction.SUBMIT, _S.GRADED)
    assert err.current_status == "graded"
    assert err.status_code == 409


# ---- field changes ----


def test_submit_sets_submitted_at() -> None:
    changes = changes_for(_report(), ReportAction.SUBMIT, actor_id=uuid4(), now=1000)
    assert changes == {"status": _S.SUBMITTED, "submitted_at": 1000}


def test_undo_clears_submitted_at() -> None:
    changes = changes_for(_report(_S.SUBMITTED), ReportAction.UNDO, actor_id=uuid4())
    assert changes["status"] is _S.DRAFT
    assert changes["submitted_at"] is None


def test_begin_review_records_reviewer() -> None:
    reviewer = uuid4()
    changes = changes_for(
        _report(_S.SUBMITTED), ReportAction.BEGIN_REVIEW, actor_id=reviewer
    )
    assert changes == {"status": _S.UNDER_REVIEW, "reviewed_by": reviewer}


def test_grade_sets_rating_marks_and_review_time() -> None:
    reviewer = uuid4()
    changes = changes_for(
        _report(_S.UNDER_REVIEW),
        ReportAction.GRADE,
        actor_id=reviewer,
        grade=Grade(rating=4, marks=85, feedback="Solid work"),
        now=2000,
    )
    assert changes["status"] is _S.GRADED
    assert changes["rating"] == 4
    assert changes["marks"] == 85
    assert changes["admin_feedback"] == "Solid work"
    assert changes["reviewed_by"] == reviewer
    assert changes["reviewed_at"] == 2000


def test_regrade_keeps_omitted_fields() -> None:
    graded = replace(
        _report(_S.GRADED), rating=3, marks=70, admin_feedback="Needs detail"
    )
    changes = changes_for(
        graded,
        ReportAction.GRADE,
        actor_id=uuid4(),
        grade=Grade(rating=None, marks=90, feedback=None),
    )
    assert changes["rating"] == 3
    assert changes["marks"] == 90
    assert "admin_feedback" not in changes


# ---- grade validation ----


@pytest.mark.parametrize(
    "grade,field",
    [
        (Grade(rating=0, marks=50, feedback=None), "rating"),
        (Grade(rating=6, marks=50, feedback=None), "rating"),
        (Grade(rating=3, marks=-1, feedback=None), "marks"),
        (Grade(rating=3, marks=101, feedback=None), "marks"),
        (Grade(rating=None, marks=50, feedback=None), "rating"),
        (Grade(rating=3, marks=None, feedback=None), "marks"),
        (Grade(rating=3, marks=50, feedback="x" * 2001), "admin_feedback"),
    ],
)
def test_first_grade_validation(grade: Grade, field: str) -> None:
    with pytest.raises(ValidationError) as exc_info:
        validate_grade(grade, first_grade=True)
    assert exc_info.value.field == field


def test_grade_bounds_are_inclusive() -> None:
    validate_grade(Grade(rating=1, marks=0, feedback=None), first_grade=True)
    validate_grade(Grade(rating=5, marks=100, feedback="x" * 2000), first_grade=True)


def test_regrade_may_omit_rating_and_marks() -> None:
    validate_grade(Grade(rating=None, marks=None, feedback="Updated"), first_grade=False)
