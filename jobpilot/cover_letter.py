"""Per-job cover letters from Groq, with a template fallback."""
from __future__ import annotations

import os
from typing import Callable

from jobpilot import llm
from jobpilot.log import get_logger
from jobpilot.models import CandidateProfile, JobCandidate
from jobpilot.retry import RetryExecutor

log = get_logger(__name__)

DEFAULT_LLM_MODEL = "llama-3.3-70b-versatile"

_PROMPT = """Write a short, professional cover letter (under 200 words) for this role.
Candidate name: {name}
Current role: {current}
Key skills: {skills}
Job title: {title}
Company: {company}
Job description (excerpt): {description}

Match the tone to the company and role. Mention 2-3 relevant skills. End with a clear one-line CTA.
Use "I" and "my" for the candidate. End the letter with "Best regards," followed by the candidate name: {name}. Do not use placeholders like [Your Name]."""


def _top_skills(profile: CandidateProfile, n: int) -> list[str]:
    return [s.name for s in profile.skills[:n]]


def _current_role(profile: CandidateProfile) -> str:
    open_periods = [p for p in profile.experience if p.end is None]
    if not open_periods:
        return ""
    period = open_periods[0]
    return f"{period.title} at {period.company}"


def fallback_letter(job: JobCandidate, profile: CandidateProfile) -> str:
    skills = ", ".join(_top_skills(profile, 5))
    current = _current_role(profile)
    intro = f"I am currently working as {current}. " if current else ""
    return f"""Dear Hiring Team,

I am writing to apply for the {job.title} position at {job.company}.

{intro}My experience aligns with your requirements, including: {skills}. I am particularly interested in contributing to your team's success.

I would welcome the opportunity to discuss how my background can contribute to your team.

Best regards,
{profile.name}"""


class CoverLetterWriter:
    """Callable ``(job, profile) -> str`` used by the form filler.

    Without an API key the profile's own letter is used, or a template when
    the profile has none. Generation failures fall back the same way.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        *,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.environ.get("GROQ_API_KEY", "").strip()
        self.model = model or os.environ.get("GROQ_LLM_MODEL", DEFAULT_LLM_MODEL).strip()
        self.sleep = sleep

    def __call__(self, job: JobCandidate, profile: CandidateProfile) -> str:
        if not self.api_key:
            log.debug("No GROQ_API_KEY — using stored or template cover letter")
            return profile.cover_letter or fallback_letter(job, profile)

        prompt = _PROMPT.format(
            name=profile.name,
            current=_current_role(profile) or "n/a",
            skills=", ".join(_top_skills(profile, 8)),
            title=job.title,
            company=job.company,
            description=job.description[:1500],
        )
        executor = RetryExecutor(2, 2.0, sleep=self.sleep, retryable=llm.transient_errors())
        try:
            letter = executor.execute(
                lambda: llm.chat(self.api_key, self.model, prompt, max_tokens=400),
                label="cover letter",
            )
        except Exception as exc:
            log.warning("Cover letter generation failed (%s), using fallback", exc)
            return profile.cover_letter or fallback_letter(job, profile)
        if not letter:
            return profile.cover_letter or fallback_letter(job, profile)
        log.info("Cover letter generated for %s @ %s", job.title, job.company)
        return letter
