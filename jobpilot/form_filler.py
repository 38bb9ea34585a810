"""Fill classified form fields from the candidate profile."""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from datetime import date
from typing import Callable, Sequence

from jobpilot.browser import BrowserDriver
from jobpilot.errors import JobPilotError, RequiredFieldMissingError
from jobpilot.log import get_logger
from jobpilot.matcher import parse_date, total_experience_years
from jobpilot.models import CandidateProfile, FillResult, FormField, JobCandidate

log = get_logger(__name__)

# Label patterns, checked in order, for fields the classifier left unmapped
LABEL_HINTS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"first\s*name|given\s*name", re.I), "first_name"),
    (re.compile(r"last\s*name|surname|family\s*name", re.I), "last_name"),
    (re.compile(r"full\s*name|^\s*name\s*\*?\s*$", re.I), "full_name"),
    (re.compile(r"e-?mail", re.I), "email"),
    (re.compile(r"phone|mobile", re.I), "phone"),
    (re.compile(r"linkedin", re.I), "linkedin"),
    (re.compile(r"website|portfolio|github", re.I), "website"),
    (re.compile(r"cover\s*letter", re.I), "cover_letter"),
    (re.compile(r"resume|\bcv\b", re.I), "resume"),
    (re.compile(r"years.*experience|experience.*years", re.I), "years_experience"),
    (re.compile(r"current.*(title|position|role)|job\s*title", re.I), "current_title"),
    (re.compile(r"current.*(company|employer)|employer", re.I), "current_company"),
    (re.compile(r"city|location|where.*based", re.I), "location"),
]

_MAPPING_KEYS = {
    "firstname": "first_name",
    "lastname": "last_name",
    "fullname": "full_name",
    "name": "full_name",
    "email": "email",
    "phone": "phone",
    "phonenumber": "phone",
    "location": "location",
    "city": "location",
    "linkedin": "linkedin",
    "website": "website",
    "portfolio": "website",
    "resume": "resume",
    "resumepath": "resume",
    "cv": "resume",
    "coverletter": "cover_letter",
    "yearsexperience": "years_experience",
    "yearsofexperience": "years_experience",
    "currenttitle": "current_title",
    "currentcompany": "current_company",
}


class FormFiller(ABC):
    @abstractmethod
    def fill(
        self,
        driver: BrowserDriver,
        fields: Sequence[FormField],
        profile: CandidateProfile,
        job: JobCandidate,
    ) -> FillResult:
        """Fill what can be resolved; raise RequiredFieldMissingError otherwise."""


def profile_values(profile: CandidateProfile, as_of: date | None = None) -> dict[str, str]:
    first, _, last = profile.name.strip().partition(" ")
    current = None
    if profile.experience:
        current = max(profile.experience, key=lambda p: (p.end is None, parse_date(p.start) or date.min))
    years = total_experience_years(profile.experience, as_of or date.today())
    return {
        "first_name": first,
        "last_name": last.strip(),
        "full_name": profile.name.strip(),
        "email": profile.email,
        "phone": profile.phone,
        "location": profile.location,
        "linkedin": profile.linkedin,
        "website": profile.website,
        "resume": profile.resume_path,
        "cover_letter": profile.cover_letter,
        "years_experience": str(int(years)) if profile.experience else "",
        "current_title": current.title if current else "",
        "current_company": current.company if current else "",
    }


def _mapping_key(raw: str) -> str | None:
    squashed = re.sub(r"[^a-z]", "", raw.lower())
    return _MAPPING_KEYS.get(squashed)


class ProfileFormFiller(FormFiller):
    """Maps fields to profile values; ``cover_letters`` writes one letter per job."""

    def __init__(
        self,
        as_of: date | None = None,
        cover_letters: Callable[[JobCandidate, CandidateProfile], str] | None = None,
    ) -> None:
        self.as_of = as_of
        self.cover_letters = cover_letters
        self._letters: dict[str, str] = {}

    @staticmethod
    def profile_key(field: FormField) -> str | None:
        key = _mapping_key(field.profile_mapping) if field.profile_mapping else None
        if key is None:
            key = next((k for pattern, k in LABEL_HINTS if pattern.search(field.label)), None)
        return key

    def resolve(self, field: FormField, profile: CandidateProfile, values: dict[str, str]) -> str:
        label = field.label.lower()
        value = next(
            (answer for question, answer in profile.answers.items()
             if answer and question.lower() in label),
            "",
        )
        if not value:
            key = self.profile_key(field)
            value = values.get(key, "") if key else ""

        if value and field.options:
            wanted = value.lower()
            value = next((o for o in field.options if o.lower() == wanted), value)
        return value

    def letter_for(self, job: JobCandidate, profile: CandidateProfile) -> str:
        if self.cover_letters is None:
            return profile.cover_letter
        if job.id not in self._letters:
            self._letters[job.id] = self.cover_letters(job, profile)
        return self._letters[job.id]

    def fill(
        self,
        driver: BrowserDriver,
        fields: Sequence[FormField],
        profile: CandidateProfile,
        job: JobCandidate,
    ) -> FillResult:
        result = FillResult()
        values = profile_values(profile, self.as_of)
        if self.cover_letters is not None and any(self.profile_key(f) == "cover_letter" for f in fields):
            values["cover_letter"] = self.letter_for(job, profile)
        for field in fields:
            name = field.label or field.selector
            value = self.resolve(field, profile, values)
            if not value:
                if field.required:
                    raise RequiredFieldMissingError(name, {"job_id": job.id, "selector": field.selector})
                result.fields_skipped += 1
                continue
            try:
                driver.fill_field(field.selector, value, field_type=field.type)
            except JobPilotError as exc:
                if field.required:
                    raise
                result.errors.append(f"{name}: {exc.message}")
                result.fields_skipped += 1
                continue
            result.fields_filled += 1
        log.info("Filled %d field(s), skipped %d for %s @ %s",
                 result.fields_filled, result.fields_skipped, job.title, job.company)
        return result
