"""Remotive — free API for remote tech jobs (no API key required).

Docs: https://remotive.com/api/remote-jobs
"""
from __future__ import annotations

import hashlib
import re
from datetime import datetime, timezone

import requests

from jobpilot.log import get_logger
from jobpilot.models import JobCandidate, utcnow
from jobpilot.rate_limiter import platform_for_url
from jobpilot.retry import retry
from jobpilot.sources.base import JobSource

log = get_logger(__name__)

API_URL = "https://remotive.com/api/remote-jobs"

_GENERIC_WORDS = {"senior", "junior", "lead", "staff", "principal", "manager",
                  "engineer", "specialist", "consultant", "ii", "iii", "iv"}

_SALARY_RE = re.compile(r"(\d[\d,.]*)\s*(k)?", re.I)


def parse_salary(text: str) -> tuple[float | None, float | None]:
    """Pull a (min, max) out of strings like "$90k - $120k" or "100,000 USD"."""
    values: list[float] = []
    for number, thousands in _SALARY_RE.findall(text or ""):
        try:
            value = float(number.replace(",", ""))
        except ValueError:
            continue
        if thousands:
            value *= 1000
        if value >= 1000:
            values.append(value)
    if not values:
        return None, None
    return min(values), max(values)


def _published(value: str | None) -> datetime:
    if value:
        try:
            parsed = datetime.fromisoformat(value)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        except ValueError:
            pass
    return utcnow()


class RemotiveSource(JobSource):
    name = "remotive"

    @retry(max_attempts=2, base_delay=1.5, retryable=(requests.RequestException, OSError))
    def _fetch(self, search: str, limit: int) -> list[JobCandidate]:
        params: dict = {"limit": limit}
        if search:
            params["search"] = search

        r = requests.get(API_URL, params=params, timeout=15)
        r.raise_for_status()
        data = r.json()

        jobs: list[JobCandidate] = []
        for hit in data.get("jobs", []):
            title = hit.get("title", "")
            company = hit.get("company_name", "")
            raw_id = hit.get("id", f"{title}{company}")
            url = hit.get("url", "")
            salary_min, salary_max = parse_salary(hit.get("salary", ""))
            jobs.append(
                JobCandidate(
                    id="remotive-" + hashlib.sha256(str(raw_id).encode()).hexdigest()[:12],
                    title=title,
                    company=company,
                    location=hit.get("candidate_required_location") or "Remote",
                    url=url,
                    description=hit.get("description", ""),
                    source=self.name,
                    discovered_at=_published(hit.get("publication_date")),
                    required_skills=tuple(t for t in hit.get("tags", []) if isinstance(t, str)),
                    salary_min=salary_min,
                    salary_max=salary_max,
                    remote=True,
                    platform=platform_for_url(url),
                )
            )
        return jobs

    def search(self, query: str, locations: list[str], limit: int = 20) -> list[JobCandidate]:
        # Remotive works best with short, broad search terms, not full role titles.
        search_terms: list[str] = []
        for role in [query, *self.profile.preferences.target_roles[:2]]:
            distinctive = [w for w in (role or "").lower().split() if w not in _GENERIC_WORDS]
            if distinctive and distinctive[0] not in search_terms:
                search_terms.append(distinctive[0])
        if not search_terms:
            search_terms.append("engineer")

        all_jobs: list[JobCandidate] = []
        seen_ids: set[str] = set()
        for term in search_terms:
            batch = self._fetch(term, limit=limit)
            for j in batch:
                if j.id not in seen_ids:
                    seen_ids.add(j.id)
                    all_jobs.append(j)
            log.debug("Remotive search=%r returned %d jobs", term, len(batch))
        return all_jobs[:limit]
