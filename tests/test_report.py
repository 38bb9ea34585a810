"""Tests for the markdown session report and the CSV audit ledger."""
from __future__ import annotations

from conftest import make_job
from jobpilot import tracker
from jobpilot.models import AttemptStatus, SessionStatus
from jobpilot.report import build_session_report, write_session_report


def _finished_session(store):
    session = store.sessions.create("jane", "apply", total_items=3)
    outcomes = [
        ("a", AttemptStatus.SUCCESS, "Application submitted (2 page(s))", None),
        ("b", AttemptStatus.REQUIRES_MANUAL, "manual auth required", "/tmp/shots/b.png"),
        ("c", AttemptStatus.FAILED, "gave up after 3 attempt(s): Timeout 20000ms exceeded", None),
    ]
    for job_id, status, message, shot in outcomes:
        attempt = store.attempts.create(session.id, make_job(job_id, company=f"Co {job_id}"))
        store.attempts.finalize(attempt.id, status, message, screenshot_path=shot)
    store.sessions.update(session.id, processed_items=3, status=SessionStatus.COMPLETED)
    return store.sessions.find_by_id(session.id), store.attempts.find_by_session(session.id)


def test_report_separates_manual_from_failed(store):
    session, attempts = _finished_session(store)
    report = build_session_report(session, attempts, scores={"a": 91.5})

    assert "**Status:** completed" in report
    assert "3/3 (100%)" in report
    assert "## Needs your attention" in report
    attention = report.split("## Needs your attention")[1].split("## Attempts")[0]
    assert "Co b" in attention
    assert "Co c" not in attention
    assert "Login wall" in attention
    assert "✋ Needs you" in report
    assert "❌ Failed" in report
    assert "| 92 |" in report
    assert "Page timed out" in report
    assert "[screenshot](/tmp/shots/b.png)" in report


def test_report_without_attempts(store):
    session = store.sessions.create("jane", "apply")
    report = build_session_report(session, [])
    assert "## Attempts" not in report
    assert "## Needs your attention" not in report


def test_write_report(store, tmp_path):
    session, attempts = _finished_session(store)
    path = write_session_report(build_session_report(session, attempts), session.id, tmp_path)
    assert path.name == f"session_{session.id[:8]}.md"
    assert path.read_text(encoding="utf-8").startswith("# Application Session")


def test_ledger_rows(store, tmp_path):
    _, attempts = _finished_session(store)
    ledger = tmp_path / "ledger" / "applications.csv"
    for attempt in attempts:
        tracker.record_attempt(attempt, 80.0, path=ledger)

    rows = tracker.get_rows(ledger)
    assert [r["status"] for r in rows] == ["success", "requires_manual", "failed"]
    assert rows[0]["score"] == "80.00"
    assert rows[1]["screenshot_path"] == "/tmp/shots/b.png"
    assert tracker.get_rows(ledger, session_id="other") == []


def test_ensure_tracker_writes_header_once(tmp_path):
    path = tmp_path / "applications.csv"
    tracker.ensure_tracker(path)
    tracker.ensure_tracker(path)
    assert path.read_text(encoding="utf-8").count("attempt_id") == 1
