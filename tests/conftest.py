"""
Pytest fixtures: scripted browser and classifier fakes, a temp store, sample data.
"""
from __future__ import annotations

import os
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))
os.environ.setdefault("JOBPILOT_LOG_DIR", str(Path(__file__).parent.parent / "logs"))

from jobpilot.browser import BrowserDriver
from jobpilot.classifier import PageClassifier
from jobpilot.config import WorkflowConfig
from jobpilot.models import (
    CandidateProfile,
    ExperiencePeriod,
    FormField,
    JobCandidate,
    PageClassification,
    PageType,
    Preferences,
    Proficiency,
    Skill,
)
from jobpilot.session_store import SessionStore
from jobpilot.timing import HumanPacer, Sleeper

AS_OF = date(2024, 6, 1)
EPOCH = datetime(2024, 5, 1, tzinfo=timezone.utc)


# === Fakes ===

class FakeDriver(BrowserDriver):
    """Records every call. ``clickable=None`` means every click lands."""

    def __init__(self, *, clickable=None, text="", navigate_failures=0, navigate_error=None):
        self.clickable = clickable
        self.text = text
        self.navigate_failures = navigate_failures
        self.navigate_error = navigate_error or RuntimeError("net::ERR_TIMED_OUT")
        self.text_error = None
        self.click_error = None
        self.fill_errors: dict[str, Exception] = {}
        self.visited: list[str] = []
        self.clicks: list[list[str]] = []
        self.fills: list[tuple[str, str, str]] = []
        self.closed = False

    def navigate(self, url):
        self.visited.append(url)
        if self.navigate_failures:
            self.navigate_failures -= 1
            raise self.navigate_error

    def find_and_click(self, selectors):
        self.clicks.append(list(selectors))
        if self.click_error is not None:
            raise self.click_error
        if self.clickable is None:
            return True
        return any(s in self.clickable for s in selectors)

    def fill_field(self, selector, value, *, field_type="text"):
        if selector in self.fill_errors:
            raise self.fill_errors[selector]
        self.fills.append((selector, value, field_type))

    def get_visible_text(self):
        if self.text_error is not None:
            raise self.text_error
        return self.text

    def screenshot(self):
        return b"\x89PNG fake"

    def current_url(self):
        return self.visited[-1] if self.visited else ""

    def close(self):
        self.closed = True


class ScriptedClassifier(PageClassifier):
    """Returns the scripted results in order, repeating the last one."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def classify(self, snapshot):
        self.calls += 1
        item = self.results[min(self.calls, len(self.results)) - 1]
        if isinstance(item, Exception):
            raise item
        return item


def form_page(*, fields=None, submit="#submit", next_=None):
    return PageClassification(
        PageType.APPLICATION_FORM,
        form_fields=tuple(fields if fields is not None else [
            FormField("#email", "email", "Email", required=True, profile_mapping="email"),
        ]),
        submit_selector=submit,
        next_selector=next_,
    )


def page(kind: PageType, **kwargs):
    return PageClassification(kind, **kwargs)


def make_job(job_id="job-1", **overrides) -> JobCandidate:
    data = dict(
        id=job_id,
        title="Software Engineer",
        company="Acme",
        location="San Francisco",
        url=f"https://example.com/jobs/{job_id}",
        description="TypeScript and Node.js services. 3-5 years of experience.",
        source="test",
        discovered_at=EPOCH,
        required_skills=("typescript", "node.js"),
        preferred_skills=("react",),
    )
    data.update(overrides)
    return JobCandidate(**data)


# === Fixtures ===

@pytest.fixture
def profile() -> CandidateProfile:
    return CandidateProfile(
        id="jane",
        name="Jane Doe",
        email="jane@example.com",
        phone="+1 555 0100",
        location="San Francisco",
        linkedin="https://linkedin.com/in/janedoe",
        resume_path="/tmp/jane_resume.pdf",
        skills=(
            Skill("TypeScript", Proficiency.EXPERT),
            Skill("Node.js", Proficiency.ADVANCED),
            Skill("React", Proficiency.ADVANCED),
        ),
        experience=(
            ExperiencePeriod("Acme", "Senior Software Engineer", "2018-01", None, ("postgresql",)),
        ),
        preferences=Preferences(
            target_roles=("Software Engineer",),
            locations=("San Francisco",),
            remote_ok=True,
            min_salary=100000,
        ),
    )


@pytest.fixture
def store(tmp_path) -> SessionStore:
    return SessionStore(tmp_path / "jobpilot.db")


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def pacer(sleeps) -> HumanPacer:
    return HumanPacer(0, 0, Sleeper(sleep_fn=sleeps.append))


@pytest.fixture
def fast_config() -> WorkflowConfig:
    return WorkflowConfig(
        min_match_score=0,
        human_delay_min=0,
        human_delay_max=0,
        between_applications_min=0,
        between_applications_max=0,
        retry_base_delay=1.0,
        audit_csv=False,
    )


@pytest.fixture
def job_factory():
    return make_job


@pytest.fixture
def as_of() -> date:
    return AS_OF


@pytest.fixture
def later():
    """A clock value far enough ahead for retention sweeps."""
    return datetime.now(timezone.utc) + timedelta(days=400)
