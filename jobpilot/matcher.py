"""Score and rank jobs against a candidate profile with multi-factor matching."""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Iterable

from jobpilot.log import get_logger
from jobpilot.models import (
    CandidateProfile,
    ExperiencePeriod,
    FitCategory,
    JobCandidate,
    MatchResult,
    Proficiency,
    ScoredJob,
    SkillMatch,
)

log = get_logger(__name__)

DEFAULT_WEIGHTS: dict[str, float] = {
    "skills": 0.40,
    "experience": 0.30,
    "location": 0.15,
    "salary": 0.15,
}

REQUIRED_SKILL_WEIGHT = 1.0
PREFERRED_SKILL_WEIGHT = 0.5
NO_REQUIREMENT_EXPERIENCE_SCORE = 80.0
TITLE_BOOST = 10.0

LOCATION_TIERS: dict[str, float] = {
    "exact": 100.0,
    "remote": 90.0,
    "willing-to-relocate": 60.0,
    "no-match": 0.0,
}

SKILL_ALIASES: dict[str, str] = {
    "js": "javascript",
    "ts": "typescript",
    "reactjs": "react",
    "react.js": "react",
    "node": "node.js",
    "nodejs": "node.js",
    "py": "python",
    "postgres": "postgresql",
    "mongo": "mongodb",
    "k8s": "kubernetes",
    "tf": "terraform",
    "aws lambda": "aws",
    "aws ec2": "aws",
    "aws s3": "aws",
    "gcp": "google cloud",
    "vue.js": "vue",
    "vuejs": "vue",
    "angular.js": "angular",
    "angularjs": "angular",
}

# Title words too generic to signal relevance on their own
_TITLE_NOISE = {
    "senior", "sr", "junior", "jr", "lead", "principal", "staff", "i", "ii", "iii",
    "the", "of", "and", "a", "an", "for", "to", "in", "at", "with",
}

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

# First pattern that matches wins. Ranges take the upper bound.
_YEARS_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(\d+)\s*\+\s*(?:years?|yrs?)", re.I),
    re.compile(r"(\d+)\s*[-–]\s*(\d+)\s*(?:years?|yrs?)", re.I),
    re.compile(r"(\d+)\s+to\s+(\d+)\s*(?:years?|yrs?)", re.I),
    re.compile(r"(\d+)\s*(?:years?|yrs?)", re.I),
]


def _normalize(s: str) -> str:
    return (s or "").lower().strip()


def normalize_skill(name: str) -> str:
    key = re.sub(r"\s+", " ", _normalize(name))
    return SKILL_ALIASES.get(key, key)


def _skills_match(a: str, b: str) -> bool:
    if a == b:
        return True
    if len(a) < 2 or len(b) < 2:
        return False
    return a in b or b in a


def _title_tokens(title: str) -> set[str]:
    words = re.findall(r"[a-z0-9+#.]+", _normalize(title))
    return {w.strip(".") for w in words if w.strip(".") and w.strip(".") not in _TITLE_NOISE}


def extract_required_years(text: str) -> int | None:
    """Years of experience asked for in free text, or None.

    "3-5 years" yields 5: ranges resolve to their upper bound.
    """
    for pattern in _YEARS_PATTERNS:
        m = pattern.search(text or "")
        if m:
            return int(m.groups()[-1])
    return None


def parse_date(value: str | None) -> date | None:
    """Parse the date shapes found in resumes. Unknown shapes give None."""
    raw = _normalize(value or "")
    if not raw or raw in ("present", "current", "now"):
        return None
    for fmt in ("%Y-%m-%d", "%Y-%m", "%m/%Y", "%Y"):
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    m = re.fullmatch(r"([a-z]+)\.?\s+(\d{4})", raw)
    if m and m.group(1)[:3] in _MONTHS:
        return date(int(m.group(2)), _MONTHS[m.group(1)[:3]], 1)
    return None


def total_experience_years(periods: Iterable[ExperiencePeriod], as_of: date) -> float:
    """Years covered by the periods; overlapping spans are counted once."""
    spans: list[tuple[date, date]] = []
    for period in periods:
        start = parse_date(period.start)
        if start is None:
            log.debug("Skipping experience at %s: unreadable start %r", period.company, period.start)
            continue
        end = parse_date(period.end) or as_of
        if end < start:
            continue
        spans.append((start, min(end, as_of)))
    if not spans:
        return 0.0

    spans.sort()
    merged: list[list[date]] = [list(spans[0])]
    for start, end in spans[1:]:
        if start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    days = sum((end - start).days for start, end in merged)
    return round(days / 365.25, 1)


def _clamp(score: float) -> float:
    return round(min(max(score, 0.0), 100.0), 2)


class MatchEngine:
    """Deterministic (job, profile, weights) -> MatchResult.

    ``as_of`` pins "today" for open-ended experience periods so that the
    same inputs always produce identical scores.
    """

    def __init__(self, weights: dict[str, float] | None = None, *, as_of: date | None = None) -> None:
        merged = dict(DEFAULT_WEIGHTS)
        for key, value in (weights or {}).items():
            if key not in DEFAULT_WEIGHTS:
                raise ValueError(f"Unknown match weight: {key}")
            if value < 0:
                raise ValueError(f"Match weight {key} must be non-negative")
            merged[key] = float(value)
        self.weights = merged
        self.as_of = as_of or date.today()

    # ── Category scores ──

    def _skill_component(
        self, job: JobCandidate, profile: CandidateProfile
    ) -> tuple[float, list[SkillMatch]]:
        owned: list[tuple[str, Proficiency | None]] = [
            (normalize_skill(s.name), s.proficiency) for s in profile.skills
        ]
        for period in profile.experience:
            owned.extend((normalize_skill(s), None) for s in period.skills)

        matches: list[SkillMatch] = []
        seen: set[str] = set()
        wanted = [(s, True) for s in job.required_skills] + [(s, False) for s in job.preferred_skills]
        for raw, required in wanted:
            key = normalize_skill(raw)
            if not key or key in seen:
                continue
            seen.add(key)
            hit = next((prof for name, prof in owned if _skills_match(key, name)), "absent")
            matches.append(
                SkillMatch(
                    skill=raw,
                    required=required,
                    present=hit != "absent",
                    weight=REQUIRED_SKILL_WEIGHT if required else PREFERRED_SKILL_WEIGHT,
                    proficiency=hit if isinstance(hit, Proficiency) else None,
                )
            )

        total = sum(m.weight for m in matches)
        if not total:
            return 0.0, matches
        got = sum(m.weight for m in matches if m.present)
        return _clamp(got / total * 100), matches

    def _experience_component(
        self, job: JobCandidate, profile: CandidateProfile
    ) -> tuple[float, int | None, float, bool]:
        required = extract_required_years(job.description)
        years = total_experience_years(profile.experience, self.as_of)

        if required is None:
            score = NO_REQUIREMENT_EXPERIENCE_SCORE
        elif years >= required:
            score = 100.0
        elif years >= required * 0.75:
            score = 80.0
        elif years >= required * 0.5:
            score = 60.0
        else:
            score = 30.0

        job_tokens = _title_tokens(job.title)
        own_titles = [p.title for p in profile.experience] + list(profile.preferences.target_roles)
        relevant = any(job_tokens & _title_tokens(t) for t in own_titles)
        if relevant:
            score += TITLE_BOOST
        return _clamp(score), required, years, relevant

    @staticmethod
    def _location_component(job: JobCandidate, profile: CandidateProfile) -> tuple[float, str]:
        job_loc = _normalize(job.location)
        wanted = [_normalize(l) for l in (profile.location, *profile.preferences.locations) if l]
        wanted = [w for w in wanted if w and w != "remote"]

        if job_loc and any(w == job_loc or w in job_loc or job_loc in w for w in wanted):
            kind = "exact"
        elif (job.remote or "remote" in job_loc) and profile.preferences.remote_ok:
            kind = "remote"
        elif profile.preferences.willing_to_relocate:
            kind = "willing-to-relocate"
        else:
            kind = "no-match"
        return LOCATION_TIERS[kind], kind

    @staticmethod
    def _salary_component(job: JobCandidate, profile: CandidateProfile) -> float | None:
        offered = job.salary_min or job.salary_max
        floor = profile.preferences.min_salary
        if not offered or not floor:
            return None
        if offered >= floor:
            return 100.0
        if offered >= floor * 0.9:
            return 80.0
        if offered >= floor * 0.8:
            return 60.0
        return 30.0

    # ── Public API ──

    def score(self, job: JobCandidate, profile: CandidateProfile) -> MatchResult:
        skill_score, skill_matches = self._skill_component(job, profile)
        exp_score, required_years, years, relevant = self._experience_component(job, profile)
        loc_score, loc_kind = self._location_component(job, profile)
        salary_score = self._salary_component(job, profile)

        parts = {"skills": skill_score, "experience": exp_score, "location": loc_score}
        if salary_score is not None:
            parts["salary"] = salary_score
        weight_sum = sum(self.weights[k] for k in parts)
        overall = (
            sum(score * self.weights[k] for k, score in parts.items()) / weight_sum
            if weight_sum else 0.0
        )
        overall = _clamp(overall)

        reasons: list[str] = []
        matched = [m.skill for m in skill_matches if m.present]
        missing = [m.skill for m in skill_matches if m.required and not m.present]
        if matched:
            reasons.append("Skills: " + ", ".join(matched[:5]))
        if required_years is not None and years >= required_years:
            reasons.append(f"Experience: {years:g} years (needs {required_years})")
        if relevant:
            reasons.append("Relevant title history")
        if loc_kind != "no-match":
            reasons.append(f"Location: {loc_kind}")
        if salary_score == 100.0:
            reasons.append("Salary meets expectation")

        return MatchResult(
            job_id=job.id,
            profile_id=profile.id,
            overall_score=overall,
            skill_score=skill_score,
            experience_score=exp_score,
            location_score=loc_score,
            salary_score=salary_score,
            skill_matches=tuple(skill_matches),
            fit_category=FitCategory.from_score(overall),
            required_years=required_years,
            candidate_years=years,
            location_match=loc_kind,
            reasons=tuple(reasons),
            missing_skills=tuple(missing),
        )

    def rank(
        self,
        jobs: Iterable[JobCandidate],
        profile: CandidateProfile,
        *,
        min_score: float = 0.0,
        limit: int | None = None,
    ) -> list[ScoredJob]:
        """Score every job, drop those under ``min_score``, best first.

        Ties on score go to the more recently discovered job.
        """
        jobs = list(jobs)
        scored = [ScoredJob(job.with_score(m.overall_score), m)
                  for job, m in ((j, self.score(j, profile)) for j in jobs)]
        kept = [s for s in scored if s.score >= min_score]
        kept.sort(key=lambda s: (-s.score, -s.job.discovered_at.timestamp()))
        if limit is not None:
            kept = kept[:limit]
        log.info("Scored %d jobs → %d at or above %.0f", len(jobs), len(kept), min_score)
        return kept
