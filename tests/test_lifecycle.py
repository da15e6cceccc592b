"""Tests for the issue status state machine and history ledger."""

import pytest

from civicguard.errors import (
    CommentRequired,
    InvalidTransition,
    NotFound,
    ReportTooFar,
    StatusUnchanged,
    ValidationFailed,
)
from civicguard.identity import Anonymous, Registered
from civicguard.issues.lifecycle import INITIAL_COMMENT, TRANSITIONS, allowed_transitions, can_transition
from civicguard.issues.models import IssueStatus

from conftest import CENTER, north_of


def test_transition_table_covers_every_status():
    assert set(TRANSITIONS) == set(IssueStatus)
    for status in IssueStatus:
        assert status not in allowed_transitions(status)
        assert allowed_transitions(status) == set(IssueStatus) - {status}


def test_can_transition():
    assert can_transition(IssueStatus.reported, IssueStatus.in_progress)
    assert can_transition(IssueStatus.resolved, IssueStatus.reported)
    assert not can_transition(IssueStatus.resolved, IssueStatus.resolved)


def test_open_issue_by_registered_user_records_initial_entry(engine, make_issue):
    issue = make_issue()
    assert issue.status == IssueStatus.reported
    assert issue.visible
    assert issue.flag_count == 0

    history = engine.lifecycle.get_history(issue.id)
    assert len(history) == 1
    assert history[0].previous_status is None
    assert history[0].new_status == IssueStatus.reported
    assert history[0].comment == INITIAL_COMMENT
    assert history[0].actor_id == "reporter"


def test_anonymous_issue_has_no_initial_entry(engine, make_issue):
    issue = make_issue(reporter=Anonymous("sess-1"))
    assert issue.is_anonymous
    assert engine.lifecycle.get_history(issue.id) == []


def test_open_issue_validation(engine):
    with pytest.raises(ValidationFailed):
        engine.report_issue("ab", "A long enough description", "roads", CENTER)
    with pytest.raises(ValidationFailed):
        engine.report_issue("Broken lamp", "short", "lighting", CENTER)
    with pytest.raises(ValidationFailed) as exc_info:
        engine.report_issue("Broken lamp", "Lamp has been out for a week", "parks", CENTER)
    assert exc_info.value.details["field"] == "category"


def test_open_issue_too_far_from_reporter(engine):
    with pytest.raises(ReportTooFar):
        engine.report_issue(
            "Broken lamp",
            "Lamp has been out for a week",
            "lighting",
            CENTER,
            reporter=Registered("u1"),
            reporter_location=north_of(CENTER, 12),
        )


def test_transition_appends_exactly_one_entry(engine, make_issue):
    issue = make_issue()
    result = engine.lifecycle.request_transition(issue.id, "in_progress", "Crew dispatched", "officer-1")
    assert result.issue.status == IssueStatus.in_progress
    assert result.entry.previous_status == IssueStatus.reported
    assert result.entry.new_status == IssueStatus.in_progress
    assert result.entry.actor_id == "officer-1"

    history = engine.lifecycle.get_history(issue.id)
    assert len(history) == 2
    assert history[-1] == result.entry
    assert engine.store.get_issue(issue.id).status == IssueStatus.in_progress


def test_history_is_chronological(engine, make_issue):
    issue = make_issue()
    lc = engine.lifecycle
    lc.request_transition(issue.id, "in_progress", "Crew dispatched", "officer-1")
    lc.request_transition(issue.id, "resolved", "Pothole filled", "officer-1")
    lc.request_transition(issue.id, "reported", "Reopened after complaint", "officer-2")
    statuses = [e.new_status.value for e in lc.get_history(issue.id)]
    assert statuses == ["reported", "in_progress", "resolved", "reported"]
    previous = [e.previous_status.value if e.previous_status else None for e in lc.get_history(issue.id)]
    assert previous == [None, "reported", "in_progress", "resolved"]


def test_status_unchanged(engine, make_issue):
    issue = make_issue()
    with pytest.raises(StatusUnchanged):
        engine.lifecycle.request_transition(issue.id, "reported", "Nothing to do", "officer-1")
    assert len(engine.lifecycle.get_history(issue.id)) == 1


def test_unknown_status_is_invalid_transition(engine, make_issue):
    issue = make_issue()
    with pytest.raises(InvalidTransition) as exc_info:
        engine.lifecycle.request_transition(issue.id, "closed", "Closing this one", "officer-1")
    assert exc_info.value.details == {"current": "reported", "requested": "closed"}


def test_comment_required(engine, make_issue):
    issue = make_issue()
    for comment in ("", "   ", "abc", "x" * 1001):
        with pytest.raises(CommentRequired):
            engine.lifecycle.request_transition(issue.id, "in_progress", comment, "officer-1")
    assert engine.store.get_issue(issue.id).status == IssueStatus.reported
    assert len(engine.lifecycle.get_history(issue.id)) == 1


def test_comment_is_trimmed(engine, make_issue):
    issue = make_issue()
    result = engine.lifecycle.request_transition(issue.id, "resolved", "  Fixed today  ", "officer-1")
    assert result.entry.comment == "Fixed today"


def test_unknown_issue(engine):
    with pytest.raises(NotFound):
        engine.lifecycle.request_transition("missing", "resolved", "Fixed today", "officer-1")
    with pytest.raises(NotFound):
        engine.lifecycle.get_history("missing")


def test_hidden_issue_cannot_transition(engine, make_issue):
    issue = make_issue()
    for i in range(3):
        engine.moderation.submit_flag(issue.id, Registered(f"flagger-{i}"), "Looks like spam")
    with pytest.raises(NotFound):
        engine.lifecycle.request_transition(issue.id, "resolved", "Fixed today", "officer-1")
