"""Durable storage for sessions, logs, attempts, jobs and match results.

SQLite in WAL mode: one short-lived connection per operation, so
independent sessions running on different threads or processes never
share a connection, and readers polling progress do not block the writer.
Every ``sqlite3.Error`` surfaces as ``StorageError`` (terminal per session).
"""
from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Iterator

from jobpilot.errors import AttemptFinalizedError, DuplicateAttemptError, StorageError
from jobpilot.log import get_logger
from jobpilot.models import (
    ApplicationAttempt,
    AttemptStatus,
    FitCategory,
    JobCandidate,
    MatchResult,
    Proficiency,
    SessionLog,
    SessionStatus,
    SkillMatch,
    WorkflowSession,
    utcnow,
)

log = get_logger(__name__)

LOG_LEVELS = ("debug", "info", "warn", "error")

SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    type TEXT NOT NULL,
    status TEXT NOT NULL,
    cancel_requested INTEGER NOT NULL DEFAULT 0,
    config TEXT NOT NULL DEFAULT '{}',
    stats TEXT NOT NULL DEFAULT '{}',
    current_task TEXT,
    total_items INTEGER NOT NULL DEFAULT 0,
    processed_items INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    started_at TEXT NOT NULL,
    ended_at TEXT,
    last_activity_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sessions_owner ON sessions(owner, started_at);

CREATE TABLE IF NOT EXISTS session_logs (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    session_id TEXT NOT NULL,
    level TEXT NOT NULL,
    message TEXT NOT NULL,
    context TEXT,
    timestamp TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_logs_session ON session_logs(session_id, seq);

CREATE TABLE IF NOT EXISTS attempts (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    session_id TEXT NOT NULL,
    job_id TEXT NOT NULL,
    job_title TEXT NOT NULL,
    company TEXT NOT NULL,
    url TEXT NOT NULL,
    status TEXT NOT NULL,
    message TEXT NOT NULL DEFAULT '',
    attempt_number INTEGER NOT NULL,
    fields_filled INTEGER NOT NULL DEFAULT 0,
    screenshot_path TEXT,
    errors TEXT NOT NULL DEFAULT '[]',
    started_at TEXT NOT NULL,
    finished_at TEXT,
    UNIQUE (session_id, job_id, attempt_number)
);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    discovered_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS matches (
    job_id TEXT NOT NULL,
    profile_id TEXT NOT NULL,
    data TEXT NOT NULL,
    analyzed_at TEXT NOT NULL,
    PRIMARY KEY (job_id, profile_id)
);
"""


def _new_id() -> str:
    return str(uuid.uuid4())


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Database:
    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageError(f"Cannot create database directory: {exc}") from exc
        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)

    @contextmanager
    def connect(self, *, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success.

        ``immediate`` takes the write lock up front, for read-modify-write
        sequences that other processes may race.
        """
        try:
            conn = sqlite3.connect(self.path, timeout=30)
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open database {self.path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise StorageError(f"Database operation failed: {exc}") from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()


# ── Session logs ────────────────────────────────────────────────────────

class EventLog:
    def __init__(self, db: Database) -> None:
        self.db = db

    def append(
        self,
        session_id: str,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> SessionLog:
        if level not in LOG_LEVELS:
            level = "info"
        entry = SessionLog(_new_id(), session_id, level, message, context, utcnow())
        with self.db.connect() as conn:
            conn.execute(
                "INSERT INTO session_logs (id, session_id, level, message, context, timestamp)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (entry.id, session_id, level, message,
                 json.dumps(context, default=str) if context else None, _ts(entry.timestamp)),
            )
        return entry

    def list(
        self,
        session_id: str,
        *,
        level: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[SessionLog]:
        """Chronological log lines for a session."""
        sql = "SELECT * FROM session_logs WHERE session_id = ?"
        params: list[Any] = [session_id]
        if level:
            sql += " AND level = ?"
            params.append(level)
        sql += " ORDER BY seq ASC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self.db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            SessionLog(
                id=r["id"],
                session_id=r["session_id"],
                level=r["level"],
                message=r["message"],
                context=json.loads(r["context"]) if r["context"] else None,
                timestamp=_dt(r["timestamp"]),
            )
            for r in rows
        ]


# ── Sessions ────────────────────────────────────────────────────────────

class SessionRepository:
    def __init__(self, db: Database, logs: EventLog) -> None:
        self.db = db
        self.logs = logs

    def create(
        self,
        owner: str,
        type: str,
        config: dict[str, Any] | None = None,
        total_items: int = 0,
    ) -> WorkflowSession:
        now = utcnow()
        session = WorkflowSession(
            id=_new_id(),
            owner=owner,
            type=type,
            status=SessionStatus.ACTIVE,
            config=dict(config or {}),
            total_items=total_items,
            started_at=now,
            last_activity_at=now,
        )
        with self.db.connect() as conn:
            conn.execute(
                "INSERT INTO sessions (id, owner, type, status, cancel_requested, config, stats,"
                " total_items, processed_items, started_at, last_activity_at)"
                " VALUES (?, ?, ?, ?, 0, ?, '{}', ?, 0, ?, ?)",
                (session.id, owner, type, session.status.value,
                 json.dumps(session.config, default=str), total_items, _ts(now), _ts(now)),
            )
        self.logs.append(session.id, "info", f"{type} session started")
        return session

    def find_by_id(self, session_id: str) -> WorkflowSession | None:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
        return self._row_to_session(row) if row else None

    def find_by_owner(
        self,
        owner: str,
        *,
        type: str | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> list[WorkflowSession]:
        sql = "SELECT * FROM sessions WHERE owner = ?"
        params: list[Any] = [owner]
        if type:
            sql += " AND type = ?"
            params.append(type)
        sql += " ORDER BY started_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self.db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_session(r) for r in rows]

    def find_active(self, owner: str, type: str) -> WorkflowSession | None:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE owner = ? AND type = ? AND status IN ('active', 'paused')"
                " ORDER BY started_at DESC LIMIT 1",
                (owner, type),
            ).fetchone()
        return self._row_to_session(row) if row else None

    def update(
        self,
        session_id: str,
        *,
        status: SessionStatus | None = None,
        cancel_requested: bool | None = None,
        current_task: str | None = None,
        total_items: int | None = None,
        processed_items: int | None = None,
        stats: dict[str, Any] | None = None,
        config: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> WorkflowSession | None:
        """Partial update. Progress only moves forward and never passes the total."""
        now = utcnow()
        with self.db.connect(immediate=True) as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            if row is None:
                return None
            updates = ["last_activity_at = ?"]
            params: list[Any] = [_ts(now)]

            total = row["total_items"] if total_items is None else max(0, total_items)
            if total_items is not None:
                updates.append("total_items = ?")
                params.append(total)
            if processed_items is not None or total_items is not None:
                wanted = row["processed_items"] if processed_items is None else processed_items
                processed = max(row["processed_items"], min(wanted, total))
                processed = min(processed, total)
                updates.append("processed_items = ?")
                params.append(processed)
            if status is not None:
                updates.append("status = ?")
                params.append(status.value)
                if status.ended:
                    updates.append("ended_at = ?")
                    params.append(_ts(now))
                else:
                    updates.append("ended_at = NULL")
            if cancel_requested is not None:
                updates.append("cancel_requested = ?")
                params.append(1 if cancel_requested else 0)
            if current_task is not None:
                updates.append("current_task = ?")
                params.append(current_task)
            if stats is not None:
                merged = {**json.loads(row["stats"]), **stats}
                updates.append("stats = ?")
                params.append(json.dumps(merged, default=str))
            if config is not None:
                updates.append("config = ?")
                params.append(json.dumps(config, default=str))
            if error_message is not None:
                updates.append("error_message = ?")
                params.append(error_message)

            params.append(session_id)
            conn.execute(f"UPDATE sessions SET {', '.join(updates)} WHERE id = ?", params)
        return self.find_by_id(session_id)

    def request_cancel(self, session_id: str) -> bool:
        """Persist a cancellation request; polled by the running orchestrator."""
        with self.db.connect() as conn:
            cur = conn.execute(
                "UPDATE sessions SET cancel_requested = 1, last_activity_at = ?"
                " WHERE id = ? AND status IN ('active', 'paused')",
                (_ts(utcnow()), session_id),
            )
            changed = cur.rowcount > 0
        if changed:
            self.logs.append(session_id, "info", "Cancellation requested")
        return changed

    def is_cancel_requested(self, session_id: str) -> bool:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT cancel_requested FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return bool(row and row["cancel_requested"])

    def cleanup_old_sessions(self, days_old: int = 30, *, now: datetime | None = None) -> int:
        """Delete ended sessions older than ``days_old`` with their logs and attempts."""
        cutoff = _ts((now or utcnow()) - timedelta(days=days_old))
        with self.db.connect() as conn:
            ids = [
                r["id"]
                for r in conn.execute(
                    "SELECT id FROM sessions WHERE status IN ('completed', 'stopped', 'error')"
                    " AND ended_at IS NOT NULL AND ended_at < ?",
                    (cutoff,),
                )
            ]
            for sid in ids:
                conn.execute("DELETE FROM session_logs WHERE session_id = ?", (sid,))
                conn.execute("DELETE FROM attempts WHERE session_id = ?", (sid,))
                conn.execute("DELETE FROM sessions WHERE id = ?", (sid,))
        if ids:
            log.info("Removed %d session(s) older than %d days", len(ids), days_old)
        return len(ids)

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> WorkflowSession:
        return WorkflowSession(
            id=row["id"],
            owner=row["owner"],
            type=row["type"],
            status=SessionStatus(row["status"]),
            cancel_requested=bool(row["cancel_requested"]),
            config=json.loads(row["config"]),
            stats=json.loads(row["stats"]),
            current_task=row["current_task"],
            total_items=row["total_items"],
            processed_items=row["processed_items"],
            error_message=row["error_message"],
            started_at=_dt(row["started_at"]),
            ended_at=_dt(row["ended_at"]),
            last_activity_at=_dt(row["last_activity_at"]),
        )


# ── Application attempts ────────────────────────────────────────────────

class ApplicationRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def create(
        self,
        session_id: str,
        job: JobCandidate,
        *,
        retry: bool = False,
        status: AttemptStatus = AttemptStatus.IN_PROGRESS,
    ) -> ApplicationAttempt:
        """Open an attempt. A second attempt for the same job needs ``retry=True``."""
        with self.db.connect(immediate=True) as conn:
            prev = conn.execute(
                "SELECT attempt_number, finished_at FROM attempts"
                " WHERE session_id = ? AND job_id = ? ORDER BY attempt_number DESC LIMIT 1",
                (session_id, job.id),
            ).fetchone()
            if prev is not None:
                if not retry:
                    raise DuplicateAttemptError(
                        f"Job {job.id} already attempted in session {session_id}"
                    )
                if prev["finished_at"] is None:
                    raise DuplicateAttemptError(f"Job {job.id} has an attempt still in progress")
            attempt = ApplicationAttempt(
                id=_new_id(),
                session_id=session_id,
                job_id=job.id,
                job_title=job.title,
                company=job.company,
                url=job.url,
                status=status,
                attempt_number=(prev["attempt_number"] + 1) if prev else 1,
            )
            conn.execute(
                "INSERT INTO attempts (id, session_id, job_id, job_title, company, url, status,"
                " attempt_number, started_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (attempt.id, session_id, job.id, job.title, job.company, job.url,
                 status.value, attempt.attempt_number, _ts(attempt.started_at)),
            )
        return attempt

    def finalize(
        self,
        attempt_id: str,
        status: AttemptStatus,
        message: str = "",
        *,
        fields_filled: int = 0,
        screenshot_path: str | None = None,
        errors: list[str] | None = None,
    ) -> ApplicationAttempt:
        """Close an attempt exactly once; finalized rows are immutable."""
        if status is AttemptStatus.IN_PROGRESS:
            raise ValueError("an attempt cannot be finalized as in_progress")
        with self.db.connect() as conn:
            cur = conn.execute(
                "UPDATE attempts SET status = ?, message = ?, fields_filled = ?,"
                " screenshot_path = ?, errors = ?, finished_at = ?"
                " WHERE id = ? AND finished_at IS NULL",
                (status.value, message, fields_filled, screenshot_path,
                 json.dumps(errors or []), _ts(utcnow()), attempt_id),
            )
            if cur.rowcount == 0:
                raise AttemptFinalizedError(f"Attempt {attempt_id} is unknown or already finalized")
            row = conn.execute("SELECT * FROM attempts WHERE id = ?", (attempt_id,)).fetchone()
        return self._row_to_attempt(row)

    def find_by_id(self, attempt_id: str) -> ApplicationAttempt | None:
        with self.db.connect() as conn:
            row = conn.execute("SELECT * FROM attempts WHERE id = ?", (attempt_id,)).fetchone()
        return self._row_to_attempt(row) if row else None

    def find_by_session(self, session_id: str) -> list[ApplicationAttempt]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM attempts WHERE session_id = ? ORDER BY seq ASC", (session_id,)
            ).fetchall()
        return [self._row_to_attempt(r) for r in rows]

    def attempted_job_ids(self, session_id: str) -> set[str]:
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT job_id FROM attempts WHERE session_id = ?", (session_id,)
            ).fetchall()
        return {r["job_id"] for r in rows}

    def latest_by_job(self, session_id: str) -> dict[str, ApplicationAttempt]:
        """The most recent attempt for each job in the session."""
        return {a.job_id: a for a in self.find_by_session(session_id)}

    def count_by_status(self, session_id: str) -> dict[str, int]:
        """Outcome counts per job; superseded attempts are not counted."""
        with self.db.connect() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM attempts a WHERE session_id = ?"
                " AND attempt_number = (SELECT MAX(attempt_number) FROM attempts b"
                " WHERE b.session_id = a.session_id AND b.job_id = a.job_id)"
                " GROUP BY status",
                (session_id,),
            ).fetchall()
        return {r["status"]: r["n"] for r in rows}

    @staticmethod
    def _row_to_attempt(row: sqlite3.Row) -> ApplicationAttempt:
        return ApplicationAttempt(
            id=row["id"],
            session_id=row["session_id"],
            job_id=row["job_id"],
            job_title=row["job_title"],
            company=row["company"],
            url=row["url"],
            status=AttemptStatus(row["status"]),
            message=row["message"],
            attempt_number=row["attempt_number"],
            fields_filled=row["fields_filled"],
            screenshot_path=row["screenshot_path"],
            errors=json.loads(row["errors"]),
            started_at=_dt(row["started_at"]),
            finished_at=_dt(row["finished_at"]),
        )


# ── Jobs & matches ──────────────────────────────────────────────────────

class JobRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def upsert(self, job: JobCandidate) -> None:
        data = {
            "id": job.id, "title": job.title, "company": job.company,
            "location": job.location, "url": job.url, "description": job.description,
            "source": job.source, "required_skills": list(job.required_skills),
            "preferred_skills": list(job.preferred_skills), "salary_min": job.salary_min,
            "salary_max": job.salary_max, "remote": job.remote, "platform": job.platform,
            "match_score": job.match_score,
        }
        with self.db.connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO jobs (id, data, discovered_at) VALUES (?, ?, ?)",
                (job.id, json.dumps(data), _ts(job.discovered_at)),
            )

    def find_by_id(self, job_id: str) -> JobCandidate | None:
        found = self.find_many([job_id])
        return found[0] if found else None

    def find_many(self, job_ids: list[str]) -> list[JobCandidate]:
        """Jobs for ``job_ids`` in the given order; unknown ids are dropped."""
        if not job_ids:
            return []
        marks = ", ".join("?" for _ in job_ids)
        with self.db.connect() as conn:
            rows = conn.execute(f"SELECT * FROM jobs WHERE id IN ({marks})", job_ids).fetchall()
        by_id = {r["id"]: self._row_to_job(r) for r in rows}
        return [by_id[j] for j in job_ids if j in by_id]

    def delete(self, job_id: str) -> bool:
        with self.db.connect() as conn:
            conn.execute("DELETE FROM matches WHERE job_id = ?", (job_id,))
            cur = conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            return cur.rowcount > 0

    def cleanup(self, days_old: int = 90, *, now: datetime | None = None) -> int:
        cutoff = _ts((now or utcnow()) - timedelta(days=days_old))
        with self.db.connect() as conn:
            conn.execute(
                "DELETE FROM matches WHERE job_id IN (SELECT id FROM jobs WHERE discovered_at < ?)",
                (cutoff,),
            )
            cur = conn.execute("DELETE FROM jobs WHERE discovered_at < ?", (cutoff,))
            return cur.rowcount

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> JobCandidate:
        d = json.loads(row["data"])
        return JobCandidate(
            id=d["id"], title=d["title"], company=d["company"], location=d["location"],
            url=d["url"], description=d["description"], source=d.get("source", "unknown"),
            discovered_at=_dt(row["discovered_at"]),
            required_skills=tuple(d.get("required_skills", [])),
            preferred_skills=tuple(d.get("preferred_skills", [])),
            salary_min=d.get("salary_min"), salary_max=d.get("salary_max"),
            remote=bool(d.get("remote", False)), platform=d.get("platform"),
            match_score=d.get("match_score"),
        )


class MatchRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    def save(self, match: MatchResult) -> None:
        """Overwrites any earlier result for the same (job, profile)."""
        data = {
            "overall_score": match.overall_score,
            "skill_score": match.skill_score,
            "experience_score": match.experience_score,
            "location_score": match.location_score,
            "salary_score": match.salary_score,
            "skill_matches": [
                {"skill": s.skill, "required": s.required, "present": s.present,
                 "weight": s.weight, "proficiency": s.proficiency.value if s.proficiency else None}
                for s in match.skill_matches
            ],
            "fit_category": match.fit_category.value,
            "required_years": match.required_years,
            "candidate_years": match.candidate_years,
            "location_match": match.location_match,
            "reasons": list(match.reasons),
            "missing_skills": list(match.missing_skills),
        }
        with self.db.connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO matches (job_id, profile_id, data, analyzed_at)"
                " VALUES (?, ?, ?, ?)",
                (match.job_id, match.profile_id, json.dumps(data), _ts(match.analyzed_at)),
            )

    def find(self, job_id: str, profile_id: str) -> MatchResult | None:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM matches WHERE job_id = ? AND profile_id = ?", (job_id, profile_id)
            ).fetchone()
        if row is None:
            return None
        d = json.loads(row["data"])
        return MatchResult(
            job_id=job_id,
            profile_id=profile_id,
            overall_score=d["overall_score"],
            skill_score=d["skill_score"],
            experience_score=d["experience_score"],
            location_score=d["location_score"],
            salary_score=d["salary_score"],
            skill_matches=tuple(
                SkillMatch(
                    skill=s["skill"], required=s["required"], present=s["present"],
                    weight=s["weight"],
                    proficiency=Proficiency(s["proficiency"]) if s.get("proficiency") else None,
                )
                for s in d["skill_matches"]
            ),
            fit_category=FitCategory(d["fit_category"]),
            required_years=d.get("required_years"),
            candidate_years=d.get("candidate_years", 0.0),
            location_match=d.get("location_match", "no-match"),
            reasons=tuple(d.get("reasons", [])),
            missing_skills=tuple(d.get("missing_skills", [])),
            analyzed_at=_dt(row["analyzed_at"]),
        )


# ── Facade ──────────────────────────────────────────────────────────────

class SessionStore:
    """All durable state behind one object, passed explicitly to the engine."""

    def __init__(self, path: Path | str) -> None:
        self.db = Database(path)
        self.logs = EventLog(self.db)
        self.sessions = SessionRepository(self.db, self.logs)
        self.attempts = ApplicationRepository(self.db)
        self.jobs = JobRepository(self.db)
        self.matches = MatchRepository(self.db)

    def is_cancel_requested(self, session_id: str) -> bool:
        return self.sessions.is_cancel_requested(session_id)

    def append_log(
        self,
        session_id: str,
        level: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> SessionLog:
        return self.logs.append(session_id, level, message, context)

    def cleanup(self, session_days: int = 30, job_days: int = 90) -> dict[str, int]:
        """Age-based retention sweep."""
        return {
            "sessions": self.sessions.cleanup_old_sessions(session_days),
            "jobs": self.jobs.cleanup(job_days),
        }
