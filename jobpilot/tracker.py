"""Audit ledger of finalized application attempts (CSV) with file locking."""
from __future__ import annotations

import csv
import fcntl
from pathlib import Path

from jobpilot.config import DATA_DIR
from jobpilot.log import get_logger
from jobpilot.models import ApplicationAttempt

log = get_logger(__name__)

APPLICATIONS_CSV: Path = DATA_DIR / "applications.csv"
HEADERS: list[str] = [
    "attempt_id", "session_id", "job_id", "title", "company", "url",
    "status", "message", "attempt_number", "fields_filled",
    "screenshot_path", "score", "finished_at",
]


def _lock(f, exclusive: bool = True) -> None:
    """Advisory file lock (Unix fcntl)."""
    try:
        op = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
        fcntl.flock(f.fileno(), op)
    except (OSError, AttributeError):
        pass


def _unlock(f) -> None:
    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)
    except (OSError, AttributeError):
        pass


def ensure_tracker(path: Path | None = None) -> Path:
    path = path or APPLICATIONS_CSV
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        with open(path, "w", newline="", encoding="utf-8") as f:
            _lock(f)
            csv.writer(f).writerow(HEADERS)
            _unlock(f)
        log.info("Created application ledger → %s", path.name)
    return path


def record_attempt(
    attempt: ApplicationAttempt,
    score: float | None = None,
    path: Path | None = None,
) -> None:
    path = ensure_tracker(path)
    row = {
        "attempt_id": attempt.id,
        "session_id": attempt.session_id,
        "job_id": attempt.job_id,
        "title": attempt.job_title,
        "company": attempt.company,
        "url": attempt.url,
        "status": attempt.status.value,
        "message": attempt.message,
        "attempt_number": attempt.attempt_number,
        "fields_filled": attempt.fields_filled,
        "screenshot_path": attempt.screenshot_path or "",
        "score": f"{score:.2f}" if score is not None else "",
        "finished_at": attempt.finished_at.strftime("%Y-%m-%d %H:%M") if attempt.finished_at else "",
    }
    with open(path, "a", newline="", encoding="utf-8") as f:
        _lock(f)
        csv.DictWriter(f, fieldnames=HEADERS).writerow(row)
        _unlock(f)
    log.debug("Tracked: %s @ %s [%s]", attempt.job_title, attempt.company, attempt.status.value)


def get_rows(path: Path | None = None, session_id: str | None = None) -> list[dict[str, str]]:
    path = ensure_tracker(path)
    with open(path, "r", encoding="utf-8") as f:
        _lock(f, exclusive=False)
        rows = list(csv.DictReader(f))
        _unlock(f)
    if session_id:
        rows = [r for r in rows if r.get("session_id") == session_id]
    return rows
