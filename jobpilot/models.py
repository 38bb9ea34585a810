"""Data models for jobs, profiles, matches, navigation and sessions."""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Jobs ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class JobCandidate:
    id: str
    title: str
    company: str
    location: str
    url: str
    description: str
    source: str = "unknown"
    discovered_at: datetime = field(default_factory=utcnow)
    required_skills: tuple[str, ...] = ()
    preferred_skills: tuple[str, ...] = ()
    salary_min: float | None = None
    salary_max: float | None = None
    remote: bool = False
    platform: str | None = None
    match_score: float | None = None

    def with_score(self, score: float) -> "JobCandidate":
        """The only mutation allowed after discovery: attach a computed score."""
        return dataclasses.replace(self, match_score=score)


# ── Candidate profile ───────────────────────────────────────────────────

class Proficiency(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


@dataclass(frozen=True)
class Skill:
    name: str
    proficiency: Proficiency = Proficiency.INTERMEDIATE


@dataclass(frozen=True)
class ExperiencePeriod:
    company: str
    title: str
    start: str
    end: str | None = None
    skills: tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class Education:
    institution: str
    degree: str = ""
    field_of_study: str = ""
    end: str | None = None


@dataclass(frozen=True)
class Preferences:
    target_roles: tuple[str, ...] = ()
    locations: tuple[str, ...] = ()
    remote_ok: bool = True
    willing_to_relocate: bool = False
    min_salary: float | None = None


@dataclass(frozen=True)
class CandidateProfile:
    id: str
    name: str
    email: str = ""
    phone: str = ""
    location: str = ""
    linkedin: str = ""
    website: str = ""
    resume_path: str = ""
    cover_letter: str = ""
    skills: tuple[Skill, ...] = ()
    experience: tuple[ExperiencePeriod, ...] = ()
    education: tuple[Education, ...] = ()
    preferences: Preferences = field(default_factory=Preferences)
    answers: dict[str, str] = field(default_factory=dict, hash=False, compare=False)


# ── Matching ────────────────────────────────────────────────────────────

class FitCategory(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    MODERATE = "moderate"
    STRETCH = "stretch"
    UNLIKELY = "unlikely"

    @classmethod
    def from_score(cls, score: float) -> "FitCategory":
        if score >= 85:
            return cls.EXCELLENT
        if score >= 70:
            return cls.GOOD
        if score >= 50:
            return cls.MODERATE
        if score >= 30:
            return cls.STRETCH
        return cls.UNLIKELY


@dataclass(frozen=True)
class SkillMatch:
    skill: str
    required: bool
    present: bool
    weight: float
    proficiency: Proficiency | None = None


@dataclass(frozen=True)
class MatchResult:
    job_id: str
    profile_id: str
    overall_score: float
    skill_score: float
    experience_score: float
    location_score: float
    salary_score: float | None
    skill_matches: tuple[SkillMatch, ...]
    fit_category: FitCategory
    required_years: int | None = None
    candidate_years: float = 0.0
    location_match: str = "no-match"
    reasons: tuple[str, ...] = ()
    missing_skills: tuple[str, ...] = ()
    analyzed_at: datetime = field(default_factory=utcnow, compare=False)


@dataclass
class ScoredJob:
    job: JobCandidate
    match: MatchResult

    @property
    def score(self) -> float:
        return self.match.overall_score


# ── Page classification (closed variant at the classifier boundary) ─────

class PageType(str, Enum):
    JOB_LISTING = "job_listing"
    JOB_DETAILS = "job_details"
    APPLICATION_FORM = "application_form"
    LOGIN = "login"
    OTHER = "other"
    ERROR = "error"

    @classmethod
    def parse(cls, value: Any) -> "PageType":
        """Unrecognized values fold into OTHER."""
        if isinstance(value, PageType):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_").replace(" ", "_")
            for member in cls:
                if member.value == key:
                    return member
        return cls.OTHER


@dataclass(frozen=True)
class ListedJob:
    title: str
    selector: str = ""
    url: str = ""


@dataclass(frozen=True)
class FormField:
    selector: str
    type: str = "text"
    label: str = ""
    required: bool = False
    profile_mapping: str = ""
    options: tuple[str, ...] = ()


@dataclass(frozen=True)
class PageClassification:
    page_type: PageType
    title: str = ""
    jobs: tuple[ListedJob, ...] = ()
    form_fields: tuple[FormField, ...] = ()
    submit_selector: str | None = None
    next_selector: str | None = None
    login_required: bool = False
    errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class PageSnapshot:
    url: str
    html: str = ""
    text: str = ""
    screenshot: bytes = b""


@dataclass
class NavigationOutcome:
    success: bool
    current_page: PageType
    classification: PageClassification | None = None
    error: str | None = None
    screenshot: bytes | None = None
    steps: int = 0

    @property
    def requires_manual(self) -> bool:
        return not self.success and self.current_page is PageType.LOGIN


@dataclass
class FillResult:
    fields_filled: int = 0
    fields_skipped: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class FormRunResult:
    success: bool
    total_pages: int
    error: str | None = None
    fields_filled: int = 0
    fields_skipped: int = 0
    errors: list[str] = field(default_factory=list)


# ── Attempts & sessions ─────────────────────────────────────────────────

class AttemptStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"
    REQUIRES_MANUAL = "requires_manual"
    PENDING_CONFIRMATION = "pending_confirmation"


@dataclass
class ApplicationAttempt:
    id: str
    session_id: str
    job_id: str
    job_title: str
    company: str
    url: str
    status: AttemptStatus = AttemptStatus.IN_PROGRESS
    message: str = ""
    attempt_number: int = 1
    fields_filled: int = 0
    screenshot_path: str | None = None
    errors: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None

    @property
    def finalized(self) -> bool:
        return self.finished_at is not None


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def ended(self) -> bool:
        return self in (SessionStatus.STOPPED, SessionStatus.COMPLETED, SessionStatus.ERROR)


@dataclass
class WorkflowSession:
    id: str
    owner: str
    type: str
    status: SessionStatus
    cancel_requested: bool = False
    config: dict[str, Any] = field(default_factory=dict)
    stats: dict[str, Any] = field(default_factory=dict)
    current_task: str | None = None
    total_items: int = 0
    processed_items: int = 0
    error_message: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    ended_at: datetime | None = None
    last_activity_at: datetime = field(default_factory=utcnow)

    @property
    def progress(self) -> float:
        if not self.total_items:
            return 0.0
        return round(100.0 * self.processed_items / self.total_items, 1)


@dataclass(frozen=True)
class SessionLog:
    id: str
    session_id: str
    level: str
    message: str
    context: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=utcnow)


# ── Rate limiting ───────────────────────────────────────────────────────

@dataclass
class RateLimitState:
    platform: str
    minute_count: int = 0
    hour_count: int = 0
    day_count: int = 0
    minute_started: float = 0.0
    hour_started: float = 0.0
    day_started: float = 0.0
    cooldown_until: float | None = None

    @property
    def last_reset(self) -> float:
        return max(self.minute_started, self.hour_started, self.day_started)


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    retry_after: float = 0.0
