"""Load profile, workflow settings and env configuration."""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from jobpilot.errors import ConfigError
from jobpilot.log import get_logger
from jobpilot.models import (
    CandidateProfile,
    Education,
    ExperiencePeriod,
    Preferences,
    Proficiency,
    Skill,
)

log = get_logger(__name__)

load_dotenv()

ROOT_DIR: Path = Path(__file__).resolve().parent.parent
CONFIG_DIR: Path = ROOT_DIR / "config"
PROFILE_PATH: Path = CONFIG_DIR / "profile.yaml"
SETTINGS_PATH: Path = CONFIG_DIR / "settings.yaml"
DATA_DIR: Path = Path(os.environ.get("JOBPILOT_DATA_DIR", ROOT_DIR / "data"))
REPORTS_DIR: Path = ROOT_DIR / "reports"
SCREENSHOTS_DIR: Path = DATA_DIR / "screenshots"


def get_env(key: str, default: str = "") -> str:
    return os.environ.get(key, default).strip()


def db_path() -> Path:
    override = get_env("JOBPILOT_DB_PATH")
    return Path(override) if override else DATA_DIR / "jobpilot.db"


def ensure_dirs() -> None:
    for d in (DATA_DIR, REPORTS_DIR, SCREENSHOTS_DIR):
        d.mkdir(parents=True, exist_ok=True)


# ── Workflow settings ───────────────────────────────────────────────────

RATE_LIMIT_POLICIES = ("wait", "skip")


@dataclass
class WorkflowConfig:
    search_query: str = ""
    locations: list[str] = field(default_factory=list)
    sources: list[str] = field(default_factory=lambda: ["remotive"])
    min_match_score: float = 50.0
    max_jobs: int = 10
    require_confirmation: bool = False
    dry_run: bool = False
    rate_limit_policy: str = "wait"
    max_rate_limit_wait: float = 120.0
    rate_limit_checks: int = 3
    retry_max_attempts: int = 3
    retry_base_delay: float = 2.0
    max_navigation_steps: int = 10
    max_form_pages: int = 20
    human_delay_min: float = 1.5
    human_delay_max: float = 3.0
    between_applications_min: float = 3.0
    between_applications_max: float = 5.0
    cancel_poll_interval: float = 1.0
    capture_screenshots: bool = True
    audit_csv: bool = True
    platform_limits: dict[str, dict[str, int]] = field(default_factory=dict)
    match_weights: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "WorkflowConfig":
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(k for k in data if k not in known)
        if unknown:
            log.warning("Ignoring unknown settings: %s", ", ".join(unknown))
        cfg = cls(**{k: v for k, v in data.items() if k in known})
        cfg.validate()
        return cfg

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def validate(self) -> None:
        problems: list[str] = []
        score = self.min_match_score
        if not isinstance(score, (int, float)) or isinstance(score, bool) or not 0 <= score <= 100:
            problems.append("min_match_score must be within 0-100")
        for name in ("max_jobs", "retry_max_attempts", "max_navigation_steps",
                     "max_form_pages", "rate_limit_checks"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                problems.append(f"{name} must be a positive integer")
        for name in ("retry_base_delay", "max_rate_limit_wait", "human_delay_min",
                     "human_delay_max", "between_applications_min",
                     "between_applications_max"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value < 0:
                problems.append(f"{name} must be a non-negative number")
        if not isinstance(self.cancel_poll_interval, (int, float)) or self.cancel_poll_interval <= 0:
            problems.append("cancel_poll_interval must be positive")
        if self.rate_limit_policy not in RATE_LIMIT_POLICIES:
            problems.append(f"rate_limit_policy must be one of {', '.join(RATE_LIMIT_POLICIES)}")
        if not problems:
            if self.human_delay_min > self.human_delay_max:
                problems.append("human_delay_min exceeds human_delay_max")
            if self.between_applications_min > self.between_applications_max:
                problems.append("between_applications_min exceeds between_applications_max")
        for platform, limits in (self.platform_limits or {}).items():
            if not isinstance(limits, dict):
                problems.append(f"platform_limits.{platform} must be a mapping")
                continue
            for key, value in limits.items():
                if key not in ("per_minute", "per_hour", "per_day"):
                    problems.append(f"platform_limits.{platform}.{key} is not a known window")
                elif not isinstance(value, int) or value < 1:
                    problems.append(f"platform_limits.{platform}.{key} must be a positive integer")
        if problems:
            raise ConfigError("Invalid workflow configuration: " + "; ".join(problems), problems)


def load_settings(path: Path | None = None) -> WorkflowConfig:
    path = path or SETTINGS_PATH
    if not path.exists():
        log.info("No settings file at %s — using defaults", path)
        return WorkflowConfig()
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read settings {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Settings file {path} must contain a mapping")
    return WorkflowConfig.from_dict(data)


# ── Candidate profile ───────────────────────────────────────────────────

def _skill(raw: Any) -> Skill:
    if isinstance(raw, str):
        return Skill(name=raw.strip())
    if isinstance(raw, dict) and raw.get("name"):
        level = str(raw.get("proficiency", "intermediate")).lower()
        try:
            proficiency = Proficiency(level)
        except ValueError:
            raise ConfigError(f"Unknown proficiency {level!r} for skill {raw['name']!r}")
        return Skill(name=str(raw["name"]).strip(), proficiency=proficiency)
    raise ConfigError(f"Invalid skill entry: {raw!r}")


def _as_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def profile_from_dict(data: dict[str, Any]) -> CandidateProfile:
    if not isinstance(data, dict):
        raise ConfigError("Profile must be a mapping")
    if not data.get("name"):
        raise ConfigError("Profile is missing a name")

    experience = tuple(
        ExperiencePeriod(
            company=str(e.get("company", "")),
            title=str(e.get("title", "")),
            start=str(e.get("start", "")),
            end=_as_str(e.get("end")),
            skills=tuple(e.get("skills", []) or []),
            description=str(e.get("description", "") or ""),
        )
        for e in data.get("experience", []) or []
    )
    education = tuple(
        Education(
            institution=str(e.get("institution", "")),
            degree=str(e.get("degree", "") or ""),
            field_of_study=str(e.get("field", "") or ""),
            end=_as_str(e.get("end")),
        )
        for e in data.get("education", []) or []
    )
    prefs = data.get("preferences", {}) or {}
    min_salary = prefs.get("min_salary")
    preferences = Preferences(
        target_roles=tuple(prefs.get("target_roles", []) or []),
        locations=tuple(prefs.get("locations", []) or []),
        remote_ok=bool(prefs.get("remote_ok", True)),
        willing_to_relocate=bool(prefs.get("willing_to_relocate", False)),
        min_salary=float(min_salary) if min_salary is not None else None,
    )
    return CandidateProfile(
        id=str(data.get("id") or data["name"]).strip(),
        name=str(data["name"]).strip(),
        email=str(data.get("email", "") or ""),
        phone=str(data.get("phone", "") or ""),
        location=str(data.get("location", "") or ""),
        linkedin=str(data.get("linkedin", "") or ""),
        website=str(data.get("website", "") or ""),
        resume_path=str(data.get("resume_path", "") or ""),
        cover_letter=str(data.get("cover_letter", "") or ""),
        skills=tuple(_skill(s) for s in data.get("skills", []) or []),
        experience=experience,
        education=education,
        preferences=preferences,
        answers={str(k): str(v) for k, v in (data.get("answers", {}) or {}).items()},
    )


def load_profile(path: Path | None = None) -> CandidateProfile:
    path = path or PROFILE_PATH
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read profile {path}: {exc}") from exc
    return profile_from_dict(data)
