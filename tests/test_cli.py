"""Tests for the run_agent command line."""
from __future__ import annotations

import pytest

import run_agent
from conftest import make_job
from jobpilot.models import AttemptStatus, SessionStatus
from jobpilot.session_store import SessionStore


@pytest.fixture
def cli_store(tmp_path, monkeypatch):
    path = tmp_path / "cli.db"
    monkeypatch.setattr(run_agent, "db_path", lambda: path)
    monkeypatch.setattr(run_agent, "ensure_dirs", lambda: None)
    return SessionStore(path)


def test_start_without_profile(tmp_path, capsys):
    code = run_agent.main(["start", "--profile", str(tmp_path / "missing.yaml")])
    assert code == 1
    assert "No profile found" in capsys.readouterr().out


def test_status_and_attempts(cli_store, capsys):
    session = cli_store.sessions.create("jane", "apply", total_items=2)
    attempt = cli_store.attempts.create(session.id, make_job("a"))
    cli_store.attempts.finalize(attempt.id, AttemptStatus.REQUIRES_MANUAL, "manual auth required")
    cli_store.sessions.update(session.id, processed_items=1)

    assert run_agent.main(["status", session.id]) == 0
    out = capsys.readouterr().out
    assert "1/2 (50%)" in out

    assert run_agent.main(["attempts", session.id]) == 0
    assert "needs you" in capsys.readouterr().out


def test_status_of_errored_session(cli_store):
    session = cli_store.sessions.create("jane", "apply")
    cli_store.sessions.update(session.id, status=SessionStatus.ERROR, error_message="disk full")
    assert run_agent.main(["status", session.id]) == 2


def test_cancel_and_pause(cli_store):
    running = cli_store.sessions.create("jane", "apply")
    assert run_agent.main(["pause", running.id]) == 0
    assert cli_store.sessions.find_by_id(running.id).stats["pause_requested"] is True
    assert cli_store.is_cancel_requested(running.id)

    done = cli_store.sessions.create("jane", "apply")
    cli_store.sessions.update(done.id, status=SessionStatus.COMPLETED)
    assert run_agent.main(["cancel", done.id]) == 1


def test_logs_filter(cli_store, capsys):
    session = cli_store.sessions.create("jane", "apply")
    cli_store.append_log(session.id, "error", "boom")
    assert run_agent.main(["logs", session.id, "--level", "error"]) == 0
    out = capsys.readouterr().out
    assert "boom" in out
    assert "session started" not in out


def test_cleanup(cli_store, capsys):
    assert run_agent.main(["cleanup", "--days", "7"]) == 0
    assert "Removed 0 session(s)" in capsys.readouterr().out
