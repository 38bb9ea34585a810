"""
Application workflow: discover → score → (confirm) → navigate → fill → submit → record.

One run processes its queue sequentially against one browser. Independent
sessions may run concurrently on separate orchestrators as long as they share
the RateLimiter and point at the same SessionStore. Cancellation is a flag
persisted in the store and polled before every job and during every wait.
"""
from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable

from jobpilot import tracker
from jobpilot.browser import BrowserDriver
from jobpilot.classifier import PageClassifier
from jobpilot.config import SCREENSHOTS_DIR, WorkflowConfig
from jobpilot.errors import (
    DuplicateAttemptError,
    JobTerminalError,
    RetryableError,
    SessionTerminalError,
    StorageError,
    WorkflowCancelled,
)
from jobpilot.events import EventChannel, EventType, Listener
from jobpilot.form_filler import FormFiller, ProfileFormFiller
from jobpilot.log import get_logger
from jobpilot.matcher import MatchEngine
from jobpilot.models import (
    ApplicationAttempt,
    AttemptStatus,
    CandidateProfile,
    JobCandidate,
    ScoredJob,
    SessionLog,
    SessionStatus,
    WorkflowSession,
    utcnow,
)
from jobpilot.navigator import MultiPageFormRunner, NavigationStateMachine
from jobpilot.rate_limiter import RateLimiter, platform_for_url
from jobpilot.retry import RetryExecutor
from jobpilot.session_store import SessionStore
from jobpilot.sources import JobSource, discover_jobs, get_sources
from jobpilot.timing import HumanPacer, Sleeper

log = get_logger(__name__)

SESSION_TYPE = "apply"
CANCELLED = "cancelled"

_LEVELS = {"debug": logging.DEBUG, "info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}

Confirmer = Callable[[ScoredJob], bool]
DriverFactory = Callable[[], BrowserDriver]


@dataclass
class _Outcome:
    status: AttemptStatus
    message: str
    fields_filled: int = 0
    screenshot: bytes | None = None
    errors: list[str] = field(default_factory=list)


class WorkflowOrchestrator:
    def __init__(
        self,
        store: SessionStore,
        driver_factory: DriverFactory,
        classifier: PageClassifier,
        *,
        rate_limiter: RateLimiter | None = None,
        form_filler: FormFiller | None = None,
        sources: list[JobSource] | None = None,
        confirm: Confirmer | None = None,
        listeners: list[Listener] | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        screenshots_dir: Path | None = None,
        audit_path: Path | None = None,
        as_of: date | None = None,
    ) -> None:
        self.store = store
        self.driver_factory = driver_factory
        self.classifier = classifier
        self.rate_limiter = rate_limiter
        self._limiter_overrides: dict | None = None
        self.form_filler = form_filler or ProfileFormFiller(as_of)
        self.sources = sources
        self.confirm = confirm
        self.listeners = list(listeners or [])
        self.screenshots_dir = screenshots_dir or SCREENSHOTS_DIR
        self.audit_path = audit_path
        self.as_of = as_of
        self._sleep_fn = sleep_fn
        self._rng = rng or random.Random()
        self._channels: dict[str, EventChannel] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._init_lock = threading.Lock()

    # ── Public surface ──

    def start(
        self,
        profile: CandidateProfile,
        config: WorkflowConfig | None = None,
        *,
        jobs: list[JobCandidate] | None = None,
        background: bool = False,
    ) -> str:
        """Create a session and run it; returns the session id.

        ``jobs`` skips discovery. With ``background=True`` the run happens on
        a worker thread; poll ``get_status`` or call ``wait``.
        """
        config = config or WorkflowConfig()
        session = self.store.sessions.create(profile.id, SESSION_TYPE, config.to_dict())
        self._launch(session.id, profile, config, jobs, False, background)
        return session.id

    def resume(self, session_id: str, profile: CandidateProfile, *, background: bool = False) -> str:
        """Continue a stopped or paused session with the jobs it has not finished.

        Jobs interrupted by a cancel get a fresh attempt. With a confirmer set,
        jobs left awaiting confirmation are retried too, and a completed
        session holding such jobs can be resumed.
        """
        session = self._require(session_id)
        if session.status is SessionStatus.COMPLETED and not self._has_unconfirmed(session_id):
            raise ValueError(f"Session {session_id} already completed")
        config = WorkflowConfig.from_dict(session.config)
        self.store.sessions.update(
            session_id,
            status=SessionStatus.ACTIVE,
            cancel_requested=False,
            stats={"pause_requested": False},
            current_task="Resuming",
        )
        self.store.append_log(session_id, "info", "Session resumed")
        self._launch(session_id, profile, config, None, True, background)
        return session_id

    def cancel(self, session_id: str) -> bool:
        return self.store.sessions.request_cancel(session_id)

    def pause(self, session_id: str) -> bool:
        """Like cancel, but the session ends up paused and can be resumed."""
        if not self.store.sessions.request_cancel(session_id):
            return False
        self.store.sessions.update(session_id, stats={"pause_requested": True})
        return True

    def get_status(self, session_id: str) -> WorkflowSession | None:
        return self.store.sessions.find_by_id(session_id)

    def get_attempts(self, session_id: str) -> list[ApplicationAttempt]:
        return self.store.attempts.find_by_session(session_id)

    def get_logs(self, session_id: str, *, level: str | None = None, limit: int = 100) -> list[SessionLog]:
        return self.store.logs.list(session_id, level=level, limit=limit)

    def events(self, session_id: str) -> EventChannel | None:
        return self._channels.get(session_id)

    def wait(self, session_id: str, timeout: float | None = None) -> WorkflowSession | None:
        thread = self._threads.get(session_id)
        if thread is not None:
            thread.join(timeout)
        return self.get_status(session_id)

    # ── Run lifecycle ──

    def _require(self, session_id: str) -> WorkflowSession:
        session = self.store.sessions.find_by_id(session_id)
        if session is None:
            raise KeyError(f"Unknown session {session_id}")
        return session

    def _launch(
        self,
        session_id: str,
        profile: CandidateProfile,
        config: WorkflowConfig,
        jobs: list[JobCandidate] | None,
        resuming: bool,
        background: bool,
    ) -> None:
        channel = EventChannel(session_id)
        for listener in self.listeners:
            channel.subscribe(listener)
        self._channels[session_id] = channel
        if not background:
            self._run(session_id, profile, config, jobs, resuming, channel)
            return
        thread = threading.Thread(
            target=self._run,
            args=(session_id, profile, config, jobs, resuming, channel),
            name=f"session-{session_id[:8]}",
        )
        self._threads[session_id] = thread
        thread.start()

    def _log(self, session_id: str, level: str, message: str, **context) -> None:
        log.log(_LEVELS.get(level, logging.INFO), "[%s] %s", session_id[:8], message)
        self.store.append_log(session_id, level, message, context or None)

    def _run(
        self,
        session_id: str,
        profile: CandidateProfile,
        config: WorkflowConfig,
        jobs: list[JobCandidate] | None,
        resuming: bool,
        channel: EventChannel,
    ) -> None:
        sleeper = Sleeper(
            lambda: self.store.is_cancel_requested(session_id),
            poll_interval=config.cancel_poll_interval,
            sleep_fn=self._sleep_fn,
        )
        status = SessionStatus.COMPLETED
        error: str | None = None
        driver: BrowserDriver | None = None
        try:
            config.validate()
            self._check_limiter_overrides(session_id, config)
            if resuming:
                queue = self._load_queue(session_id, profile, config)
            else:
                queue = self._build_queue(session_id, profile, config, jobs, channel)
            driver = self.driver_factory()
            self._process_queue(session_id, queue, profile, config, driver, sleeper, channel)
        except WorkflowCancelled:
            paused = self._pause_requested(session_id)
            status = SessionStatus.PAUSED if paused else SessionStatus.STOPPED
            self._log(session_id, "info", "Session paused" if paused else "Session stopped by request")
        except SessionTerminalError as e:
            status, error = SessionStatus.ERROR, e.message
            log.error("[%s] Session failed: %s", session_id[:8], e.message)
        except Exception as e:
            status, error = SessionStatus.ERROR, f"Unexpected error: {e}"
            log.exception("[%s] Session crashed", session_id[:8])
            self._finish(session_id, status, error, channel)
            raise
        finally:
            if driver is not None:
                try:
                    driver.close()
                except Exception as e:
                    log.warning("Closing browser failed: %s", e)
        self._finish(session_id, status, error, channel)

    def _limiter(self, config: WorkflowConfig) -> RateLimiter:
        """The limiter shared by every session of this orchestrator."""
        with self._init_lock:
            if self.rate_limiter is None:
                self.rate_limiter = RateLimiter.from_overrides(config.platform_limits)
                self._limiter_overrides = dict(config.platform_limits)
            return self.rate_limiter

    def _check_limiter_overrides(self, session_id: str, config: WorkflowConfig) -> None:
        self._limiter(config)
        if config.platform_limits and config.platform_limits != self._limiter_overrides:
            self._log(session_id, "warn",
                      "platform_limits ignored: this orchestrator already has a shared rate limiter",
                      platform_limits=config.platform_limits)

    def _pause_requested(self, session_id: str) -> bool:
        try:
            session = self.store.sessions.find_by_id(session_id)
        except StorageError as e:
            log.error("[%s] Could not read session: %s", session_id[:8], e)
            return False
        return bool(session and session.stats.get("pause_requested"))

    def _finish(
        self, session_id: str, status: SessionStatus, error: str | None, channel: EventChannel
    ) -> None:
        try:
            counts = self.store.attempts.count_by_status(session_id)
            self.store.sessions.update(
                session_id,
                status=status,
                error_message=error,
                current_task=status.value,
                stats={"attempts": counts},
            )
            if error:
                self.store.append_log(session_id, "error", error)
        except StorageError as e:
            log.error("[%s] Could not persist final status %s: %s", session_id[:8], status.value, e)
            counts = {}
        channel.emit(EventType.SESSION_FINISHED, status=status.value, error=error, attempts=counts)
        log.info("[%s] Session %s — %s", session_id[:8], status.value,
                 ", ".join(f"{k}={v}" for k, v in sorted(counts.items())) or "no attempts")

    # ── Queue ──

    def _build_queue(
        self,
        session_id: str,
        profile: CandidateProfile,
        config: WorkflowConfig,
        jobs: list[JobCandidate] | None,
        channel: EventChannel,
    ) -> list[ScoredJob]:
        if jobs is None:
            self.store.sessions.update(session_id, current_task="Discovering jobs")
            query = config.search_query or next(iter(profile.preferences.target_roles), "")
            locations = config.locations or list(profile.preferences.locations)
            sources = self.sources or get_sources(config.sources, profile)
            jobs = discover_jobs(sources, query, locations, limit=max(config.max_jobs * 3, 30))

        unique: dict[str, JobCandidate] = {}
        for job in jobs:
            unique.setdefault(job.id, job)
        for job in unique.values():
            self.store.jobs.upsert(job)
            channel.emit(EventType.DISCOVERED, job_id=job.id, title=job.title, company=job.company)
        self._log(session_id, "info", f"Discovered {len(unique)} job(s)")

        self.store.sessions.update(session_id, current_task="Scoring jobs")
        engine = MatchEngine(config.match_weights, as_of=self.as_of)
        ranked = engine.rank(unique.values(), profile,
                             min_score=config.min_match_score, limit=config.max_jobs)
        for scored in ranked:
            self.store.jobs.upsert(scored.job)
            self.store.matches.save(scored.match)
            channel.emit(
                EventType.MATCHED,
                job_id=scored.job.id,
                title=scored.job.title,
                company=scored.job.company,
                score=scored.score,
                fit=scored.match.fit_category.value,
            )
        self._log(session_id, "info",
                  f"{len(ranked)} job(s) at or above {config.min_match_score:g} queued",
                  queue=[s.job.id for s in ranked])
        self.store.sessions.update(
            session_id,
            total_items=len(ranked),
            current_task="Applying",
            stats={
                "queue": [s.job.id for s in ranked],
                "jobs_found": len(unique),
                "jobs_matched": len(ranked),
            },
        )
        return ranked

    def _load_queue(
        self, session_id: str, profile: CandidateProfile, config: WorkflowConfig
    ) -> list[ScoredJob]:
        session = self._require(session_id)
        ids = list(session.stats.get("queue", []))
        engine = MatchEngine(config.match_weights, as_of=self.as_of)
        queue: list[ScoredJob] = []
        for job in self.store.jobs.find_many(ids):
            match = self.store.matches.find(job.id, profile.id) or engine.score(job, profile)
            queue.append(ScoredJob(job, match))
        if len(queue) < len(ids):
            self._log(session_id, "warn", f"{len(ids) - len(queue)} queued job(s) no longer stored")
        return queue

    # ── Per-job processing ──

    def _process_queue(
        self,
        session_id: str,
        queue: list[ScoredJob],
        profile: CandidateProfile,
        config: WorkflowConfig,
        driver: BrowserDriver,
        sleeper: Sleeper,
        channel: EventChannel,
    ) -> None:
        pacer = HumanPacer(config.human_delay_min, config.human_delay_max, sleeper, self._rng)
        latest = self.store.attempts.latest_by_job(session_id)
        pending = [s for s in queue if self._needs_attempt(latest.get(s.job.id))]
        total = len(queue)
        processed = total - len(pending)
        if len(pending) < total:
            self.store.sessions.update(session_id, processed_items=processed)

        for i, scored in enumerate(pending):
            if self.store.is_cancel_requested(session_id):
                self._log(session_id, "info", "Cancellation requested — not starting new jobs")
                raise WorkflowCancelled()

            self.store.sessions.update(
                session_id, current_task=f"{scored.job.title} @ {scored.job.company}"
            )
            self._process_job(session_id, scored, profile, config, driver, sleeper, pacer, channel,
                              retry=scored.job.id in latest)

            processed += 1
            self.store.sessions.update(session_id, processed_items=processed)
            channel.emit(EventType.PROGRESS, processed=processed, total=total)

            if i < len(pending) - 1:
                sleeper.sleep(self._rng.uniform(config.between_applications_min,
                                                config.between_applications_max))

    def _has_unconfirmed(self, session_id: str) -> bool:
        if self.confirm is None:
            return False
        latest = self.store.attempts.latest_by_job(session_id).values()
        return any(a.status is AttemptStatus.PENDING_CONFIRMATION for a in latest)

    def _needs_attempt(self, previous: ApplicationAttempt | None) -> bool:
        """Unattempted jobs, jobs interrupted by a cancel, and unconfirmed jobs once a confirmer exists."""
        if previous is None:
            return True
        if previous.status is AttemptStatus.SKIPPED and previous.message == CANCELLED:
            return True
        return previous.status is AttemptStatus.PENDING_CONFIRMATION and self.confirm is not None

    def _acquire_slot(
        self, session_id: str, platform: str, config: WorkflowConfig, sleeper: Sleeper
    ) -> bool:
        limiter = self._limiter(config)
        for check in range(config.rate_limit_checks):
            decision = limiter.check_and_consume(platform)
            if decision.allowed:
                return True
            if config.rate_limit_policy == "skip" or check == config.rate_limit_checks - 1:
                return False
            if decision.retry_after > config.max_rate_limit_wait:
                self._log(session_id, "warn",
                          f"{platform} cooldown {decision.retry_after:.0f}s exceeds wait limit")
                return False
            self._log(session_id, "info", f"Rate limited on {platform}, waiting {decision.retry_after:.0f}s")
            sleeper.sleep(decision.retry_after)
        return False

    def _process_job(
        self,
        session_id: str,
        scored: ScoredJob,
        profile: CandidateProfile,
        config: WorkflowConfig,
        driver: BrowserDriver,
        sleeper: Sleeper,
        pacer: HumanPacer,
        channel: EventChannel,
        *,
        retry: bool = False,
    ) -> AttemptStatus:
        job = scored.job
        try:
            attempt = self.store.attempts.create(session_id, job, retry=retry)
        except DuplicateAttemptError as e:
            self._log(session_id, "warn", e.message, job_id=job.id)
            return AttemptStatus.SKIPPED

        try:
            outcome = self._attempt(session_id, scored, profile, config, driver, sleeper, pacer, channel)
        except WorkflowCancelled:
            # not counted as processed; resume re-queues it
            self._record(session_id, attempt, scored, _Outcome(AttemptStatus.SKIPPED, CANCELLED),
                         config, channel)
            raise
        self._record(session_id, attempt, scored, outcome, config, channel)
        return outcome.status

    def _attempt(
        self,
        session_id: str,
        scored: ScoredJob,
        profile: CandidateProfile,
        config: WorkflowConfig,
        driver: BrowserDriver,
        sleeper: Sleeper,
        pacer: HumanPacer,
        channel: EventChannel,
    ) -> _Outcome:
        job = scored.job
        platform = job.platform or platform_for_url(job.url)
        if not self._acquire_slot(session_id, platform, config, sleeper):
            return _Outcome(AttemptStatus.SKIPPED, f"rate limit reached for {platform}")

        if config.require_confirmation:
            channel.emit(EventType.CONFIRMATION_REQUIRED, job_id=job.id, title=job.title,
                         company=job.company, score=scored.score)
            if self.confirm is None:
                return _Outcome(AttemptStatus.PENDING_CONFIRMATION, "awaiting confirmation")
            if not self.confirm(scored):
                return _Outcome(AttemptStatus.SKIPPED, "Skipped by user")

        channel.emit(EventType.APPLICATION_START, job_id=job.id, title=job.title, company=job.company)
        self._log(session_id, "info", f"Applying to {job.title} @ {job.company}", job_id=job.id)

        executor = RetryExecutor(config.retry_max_attempts, config.retry_base_delay, sleep=sleeper.sleep)
        try:
            return executor.execute(
                lambda: self._apply_once(job, profile, config, driver, pacer),
                label=f"apply {job.id}",
            )
        except JobTerminalError as e:
            return _Outcome(AttemptStatus(e.status), e.message, screenshot=self._capture(driver))
        except RetryableError as e:
            return _Outcome(
                AttemptStatus.FAILED,
                f"gave up after {config.retry_max_attempts} attempt(s): {e.message}",
                screenshot=self._capture(driver),
            )

    def _apply_once(
        self,
        job: JobCandidate,
        profile: CandidateProfile,
        config: WorkflowConfig,
        driver: BrowserDriver,
        pacer: HumanPacer,
    ) -> _Outcome:
        nav = NavigationStateMachine(driver, self.classifier, pacer, max_steps=config.max_navigation_steps)
        reached = nav.navigate(job)
        if not reached.success:
            status = AttemptStatus.REQUIRES_MANUAL if reached.requires_manual else AttemptStatus.FAILED
            return _Outcome(status, reached.error or "navigation failed", screenshot=reached.screenshot)
        if config.dry_run:
            return _Outcome(AttemptStatus.SKIPPED, "dry run: application form reached")

        runner = MultiPageFormRunner(driver, self.classifier, pacer, max_pages=config.max_form_pages)
        result = runner.run(
            lambda page: self.form_filler.fill(driver, page.form_fields, profile, job),
            reached.classification,
        )
        if result.success:
            return _Outcome(
                AttemptStatus.SUCCESS,
                f"Application submitted ({result.total_pages} page(s))",
                fields_filled=result.fields_filled,
                errors=result.errors,
            )
        return _Outcome(
            AttemptStatus.FAILED,
            result.error or "form not completed",
            fields_filled=result.fields_filled,
            screenshot=self._capture(driver),
            errors=result.errors,
        )

    # ── Recording ──

    @staticmethod
    def _capture(driver: BrowserDriver) -> bytes | None:
        try:
            return driver.screenshot()
        except Exception as e:
            log.debug("Screenshot unavailable: %s", e)
            return None

    def _save_screenshot(self, job: JobCandidate, data: bytes) -> str | None:
        path = self.screenshots_dir / f"{job.id}-{utcnow().strftime('%Y%m%dT%H%M%S%f')}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            log.warning("Could not save screenshot for %s: %s", job.id, e)
            return None
        return str(path)

    def _record(
        self,
        session_id: str,
        attempt: ApplicationAttempt,
        scored: ScoredJob,
        outcome: _Outcome,
        config: WorkflowConfig,
        channel: EventChannel,
    ) -> ApplicationAttempt:
        job = scored.job
        screenshot_path = None
        if (outcome.screenshot and config.capture_screenshots
                and outcome.status is not AttemptStatus.SUCCESS):
            screenshot_path = self._save_screenshot(job, outcome.screenshot)

        final = self.store.attempts.finalize(
            attempt.id,
            outcome.status,
            outcome.message,
            fields_filled=outcome.fields_filled,
            screenshot_path=screenshot_path,
            errors=outcome.errors,
        )
        if config.audit_csv:
            try:
                tracker.record_attempt(final, scored.score, path=self.audit_path)
            except OSError as e:
                log.warning("Audit ledger write failed: %s", e)

        level = {
            AttemptStatus.SUCCESS: "info",
            AttemptStatus.FAILED: "error",
            AttemptStatus.REQUIRES_MANUAL: "warn",
        }.get(outcome.status, "info")
        self._log(session_id, level, f"{job.title} @ {job.company}: {outcome.status.value} — {outcome.message}",
                  job_id=job.id, attempt_id=final.id)
        if outcome.status in (AttemptStatus.FAILED, AttemptStatus.REQUIRES_MANUAL):
            channel.emit(EventType.ERROR, job_id=job.id, status=outcome.status.value,
                         message=outcome.message, screenshot=screenshot_path)
        channel.emit(EventType.APPLICATION_COMPLETE, job_id=job.id, status=outcome.status.value,
                     message=outcome.message, attempt_id=final.id)
        return final
