"""Tests for the admin action log."""

import tempfile

import pytest

from civicguard.audit_log import AuditLogger


def test_log_and_read_back():
    with tempfile.TemporaryDirectory() as tmpdir:
        audit = AuditLogger(tmpdir)
        entry = audit.log_flag_review("admin-1", "issue-1", "approve", "Fine", 3, 3)
        assert entry.action == "flag_review"
        assert entry.details["resolved_flags"] == 3

        entries = audit.get_entries()
        assert len(entries) == 1
        assert entries[0].id == entry.id
        assert entries[0].target_type == "issue"


def test_filters_and_order():
    with tempfile.TemporaryDirectory() as tmpdir:
        audit = AuditLogger(tmpdir)
        audit.log_flag_review("admin-1", "issue-1", "reject", "", 3, 3)
        audit.log_issue_deletion("admin-2", "issue-2", "Abusive")
        audit.log_flag_review("admin-2", "issue-2", "delete", "Abusive", 4, 4)

        assert [e.target_id for e in audit.get_entries(admin_id="admin-2")] == ["issue-2", "issue-2"]
        assert len(audit.get_entries(action="issue_delete")) == 1
        assert len(audit.get_entries(target_id="issue-1")) == 1
        stamps = [e.timestamp for e in audit.get_entries()]
        assert stamps == sorted(stamps, reverse=True)
        assert len(audit.get_entries(limit=1)) == 1


def test_unknown_action_rejected():
    with tempfile.TemporaryDirectory() as tmpdir:
        audit = AuditLogger(tmpdir)
        with pytest.raises(ValueError):
            audit.log_action("admin-1", "user_ban", "issue", "issue-1")
        with pytest.raises(ValueError):
            audit.log_action("admin-1", "flag_review", "user", "u-1")
