"""Tests for the engine facade: access gating in front of every single-issue operation."""

import logging

import pytest

from civicguard.errors import AccessDenied, MissingCallerLocation, NotFound
from civicguard.identity import Anonymous, Registered

from conftest import CENTER, north_of


def test_get_issue_inside_radius(engine, make_issue):
    issue = make_issue()
    found, decision = engine.get_issue(issue.id, north_of(CENTER, 1))
    assert found.id == issue.id
    assert decision.allowed
    assert decision.distance_km == pytest.approx(1, abs=1e-3)


def test_get_issue_outside_radius(engine, make_issue):
    issue = make_issue()
    with pytest.raises(AccessDenied) as exc_info:
        engine.get_issue(issue.id, north_of(CENTER, 6))
    assert exc_info.value.distance_km == pytest.approx(6, abs=1e-3)


def test_missing_location_checked_first(engine):
    with pytest.raises(MissingCallerLocation):
        engine.get_issue("does-not-exist", None)


def test_hidden_issue_is_not_found(engine, make_issue):
    issue = make_issue()
    for who in ("a", "b", "c"):
        engine.moderation.submit_flag(issue.id, Registered(who), "Looks like spam")
    with pytest.raises(NotFound):
        engine.get_issue(issue.id, CENTER)
    with pytest.raises(NotFound):
        engine.get_history(issue.id, CENTER)


def test_far_caller_cannot_update_or_flag(engine, make_issue):
    issue = make_issue()
    far = north_of(CENTER, 20)
    with pytest.raises(AccessDenied):
        engine.update_status(issue.id, far, "resolved", "Fixed today", "officer-1")
    with pytest.raises(AccessDenied):
        engine.flag_issue(issue.id, far, Anonymous("sess-1"), "Looks like spam")
    assert engine.store.get_issue(issue.id).flag_count == 0
    assert len(engine.lifecycle.get_history(issue.id)) == 1


def test_update_status_through_facade(engine, make_issue):
    issue = make_issue()
    result = engine.update_status(issue.id, CENTER, "in_progress", "Crew dispatched", "officer-1")
    assert result.entry.previous_status.value == "reported"
    assert len(engine.get_history(issue.id, CENTER)) == 2


def test_flag_warns_when_flagger_meets_ban_criteria(engine, make_issue, caplog):
    for n in range(11):
        issue = make_issue(title=f"Issue number {n}")
        with caplog.at_level(logging.WARNING, logger="civicguard.engine"):
            engine.flag_issue(issue.id, CENTER, Registered("busy"), "Not a real problem")
    assert any("meets the ban criteria" in r.getMessage() for r in caplog.records)


def test_flagging_stats(engine, make_issue):
    issue = make_issue()
    engine.flag_issue(issue.id, CENTER, Registered("u1"), "Duplicate of another", "duplicate")
    stats = engine.flagging_stats("u1")
    assert stats.by_type == {"duplicate": 1}
    assert stats.recommendation.signal.total_flag_count == 1
    assert not stats.recommendation.should_ban
