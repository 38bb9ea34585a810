#!/usr/bin/env python3
"""Command line entry point for the application workflow."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from jobpilot.config import PROFILE_PATH, SETTINGS_PATH, db_path, ensure_dirs, load_profile, load_settings
from jobpilot.errors import ConfigError, SessionTerminalError
from jobpilot.log import get_logger
from jobpilot.models import AttemptStatus, ScoredJob, SessionStatus
from jobpilot.session_store import SessionStore

log = get_logger(__name__)

_BADGES = {
    AttemptStatus.SUCCESS: "✅ submitted",
    AttemptStatus.FAILED: "❌ failed",
    AttemptStatus.REQUIRES_MANUAL: "✋ needs you",
    AttemptStatus.SKIPPED: "⏭️  skipped",
    AttemptStatus.PENDING_CONFIRMATION: "⏸️  awaiting confirmation",
    AttemptStatus.IN_PROGRESS: "⏳ in progress",
}


def _ask(scored: ScoredJob) -> bool:
    job = scored.job
    answer = input(f"  Apply to {job.title} @ {job.company} (score {scored.score:.0f})? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def _orchestrator(store: SessionStore, args: argparse.Namespace):
    from jobpilot.browser import PlaywrightDriver
    from jobpilot.classifier import LLMPageClassifier
    from jobpilot.cover_letter import CoverLetterWriter
    from jobpilot.form_filler import ProfileFormFiller
    from jobpilot.orchestrator import WorkflowOrchestrator

    return WorkflowOrchestrator(
        store,
        lambda: PlaywrightDriver(headless=not getattr(args, "show_browser", False)),
        LLMPageClassifier(),
        form_filler=ProfileFormFiller(cover_letters=CoverLetterWriter()),
        confirm=_ask if getattr(args, "interactive", False) else None,
    )


def _print_session(store: SessionStore, session_id: str) -> int:
    session = store.sessions.find_by_id(session_id)
    if session is None:
        print(f"  Unknown session {session_id}")
        return 1
    print(f"  Session   {session.id}")
    print(f"  Status    {session.status.value}{' (cancel requested)' if session.cancel_requested else ''}")
    print(f"  Progress  {session.processed_items}/{session.total_items} ({session.progress:.0f}%)")
    if session.current_task:
        print(f"  Task      {session.current_task}")
    if session.error_message:
        print(f"  Error     {session.error_message}")
    return 2 if session.status is SessionStatus.ERROR else 0


def _finish_run(store: SessionStore, session_id: str, write_report: bool) -> int:
    code = _print_session(store, session_id)
    if write_report:
        from jobpilot.report import build_session_report, write_session_report

        session = store.sessions.find_by_id(session_id)
        attempts = store.attempts.find_by_session(session_id)
        path = write_session_report(build_session_report(session, attempts), session_id)
        print(f"  Report    {path}")
    return code


def cmd_start(store: SessionStore, args: argparse.Namespace) -> int:
    profile = load_profile(Path(args.profile))
    config = load_settings(Path(args.settings))
    if args.dry_run:
        config.dry_run = True
    if args.interactive:
        config.require_confirmation = True
    session_id = _orchestrator(store, args).start(profile, config)
    return _finish_run(store, session_id, args.report)


def cmd_resume(store: SessionStore, args: argparse.Namespace) -> int:
    profile = load_profile(Path(args.profile))
    _orchestrator(store, args).resume(args.session_id, profile)
    return _finish_run(store, args.session_id, args.report)


def cmd_cancel(store: SessionStore, args: argparse.Namespace) -> int:
    if store.sessions.request_cancel(args.session_id):
        print("  Cancellation requested; the run stops before its next job.")
        return 0
    print("  Session is not running.")
    return 1


def cmd_pause(store: SessionStore, args: argparse.Namespace) -> int:
    if store.sessions.request_cancel(args.session_id):
        store.sessions.update(args.session_id, stats={"pause_requested": True})
        print("  Pause requested; resume later with `run_agent.py resume`.")
        return 0
    print("  Session is not running.")
    return 1


def cmd_status(store: SessionStore, args: argparse.Namespace) -> int:
    return _print_session(store, args.session_id)


def cmd_attempts(store: SessionStore, args: argparse.Namespace) -> int:
    attempts = store.attempts.find_by_session(args.session_id)
    if not attempts:
        print("  No attempts recorded.")
    for a in attempts:
        print(f"  {_BADGES[a.status]:<26} {a.job_title} @ {a.company} — {a.message}")
        if a.screenshot_path:
            print(f"  {'':<26} screenshot: {a.screenshot_path}")
    return 0


def cmd_logs(store: SessionStore, args: argparse.Namespace) -> int:
    for entry in store.logs.list(args.session_id, level=args.level, limit=args.limit):
        print(f"  {entry.timestamp:%H:%M:%S}  {entry.level:<5}  {entry.message}")
    return 0


def cmd_cleanup(store: SessionStore, args: argparse.Namespace) -> int:
    removed = store.cleanup(session_days=args.days)
    print(f"  Removed {removed['sessions']} session(s) and {removed['jobs']} job(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Discover, score and apply to jobs.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_start = sub.add_parser("start", help="Start a new application session")
    p_start.add_argument("--profile", default=str(PROFILE_PATH))
    p_start.add_argument("--settings", default=str(SETTINGS_PATH))
    p_start.add_argument("--dry-run", action="store_true", help="Stop once a form is reached")
    p_start.add_argument("--interactive", action="store_true", help="Confirm each job before applying")
    p_start.add_argument("--show-browser", action="store_true")
    p_start.add_argument("--report", action="store_true", help="Write a markdown session report")
    p_start.set_defaults(func=cmd_start)

    p_resume = sub.add_parser("resume", help="Continue a stopped or paused session")
    p_resume.add_argument("session_id")
    p_resume.add_argument("--profile", default=str(PROFILE_PATH))
    p_resume.add_argument("--interactive", action="store_true")
    p_resume.add_argument("--show-browser", action="store_true")
    p_resume.add_argument("--report", action="store_true")
    p_resume.set_defaults(func=cmd_resume)

    for name, func, text in (
        ("cancel", cmd_cancel, "Request cancellation of a running session"),
        ("pause", cmd_pause, "Pause a running session"),
        ("status", cmd_status, "Show session progress"),
        ("attempts", cmd_attempts, "List application attempts"),
    ):
        p = sub.add_parser(name, help=text)
        p.add_argument("session_id")
        p.set_defaults(func=func)

    p_logs = sub.add_parser("logs", help="Show the session log")
    p_logs.add_argument("session_id")
    p_logs.add_argument("--level", choices=["debug", "info", "warn", "error"])
    p_logs.add_argument("--limit", type=int, default=100)
    p_logs.set_defaults(func=cmd_logs)

    p_clean = sub.add_parser("cleanup", help="Delete ended sessions older than N days")
    p_clean.add_argument("--days", type=int, default=30)
    p_clean.set_defaults(func=cmd_cleanup)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command in ("start", "resume") and not Path(args.profile).exists():
        print()
        print(f"  No profile found at {args.profile}.")
        print("  Copy config/profile.example.yaml to config/profile.yaml and fill it in.")
        print()
        return 1
    ensure_dirs()
    try:
        store = SessionStore(db_path())
        return args.func(store, args)
    except ConfigError as exc:
        log.error("%s", exc.message)
        for problem in exc.problems:
            log.error("  - %s", problem)
        return 1
    except SessionTerminalError as exc:
        log.error("%s", exc.message)
        return 2


if __name__ == "__main__":
    sys.exit(main())
