"""Concurrent flagging and status updates against a file-backed store."""

import threading

import pytest

from civicguard.errors import CivicGuardError, DuplicateFlag, StatusUnchanged
from civicguard.identity import Registered


def _run_threads(count, target):
    barrier = threading.Barrier(count)
    results = [None] * count

    def worker(i):
        barrier.wait()
        try:
            results[i] = target(i)
        except CivicGuardError as exc:
            results[i] = exc

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


@pytest.mark.parametrize("n", [1, 2, 3, 5, 12])
def test_concurrent_flaggers_never_lose_a_count(engine, make_issue, n):
    issue = make_issue()
    results = _run_threads(
        n, lambda i: engine.moderation.submit_flag(issue.id, Registered(f"user-{i}"), "Looks like spam")
    )

    assert all(not isinstance(r, Exception) for r in results)
    stored = engine.store.get_issue(issue.id)
    assert stored.flag_count == n
    assert stored.visible == (n < engine.moderation.threshold)
    assert sorted(r.flag_count for r in results) == list(range(1, n + 1))
    assert sum(1 for r in results if r.auto_hidden) == (1 if n >= engine.moderation.threshold else 0)


def test_concurrent_duplicate_flags_count_once(engine, make_issue):
    issue = make_issue()
    results = _run_threads(
        8, lambda i: engine.moderation.submit_flag(issue.id, Registered("same-user"), "Looks like spam")
    )
    assert sum(1 for r in results if isinstance(r, DuplicateFlag)) == 7
    assert engine.store.get_issue(issue.id).flag_count == 1


def test_concurrent_identical_transitions_apply_once(engine, make_issue):
    issue = make_issue()
    results = _run_threads(
        6,
        lambda i: engine.lifecycle.request_transition(issue.id, "in_progress", "Crew dispatched", f"officer-{i}"),
    )
    assert sum(1 for r in results if isinstance(r, StatusUnchanged)) == 5
    # Initial entry plus exactly one transition.
    assert len(engine.lifecycle.get_history(issue.id)) == 2
