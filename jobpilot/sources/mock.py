"""Mock job source for offline runs, demos and tests."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jobpilot.log import get_logger
from jobpilot.models import JobCandidate
from jobpilot.sources.base import JobSource

log = get_logger(__name__)

# Fixed reference time keeps ids, ordering and scores reproducible
_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class MockSource(JobSource):
    name = "mock"

    def search(self, query: str, locations: list[str], limit: int = 20) -> list[JobCandidate]:
        roles = list(self.profile.preferences.target_roles[:1]) or [query or "Software Engineer"]
        log.info("MockSource generating sample jobs")
        mock_jobs = [
            JobCandidate(
                id="mock-1",
                title=roles[0],
                company="TechCorp",
                location=locations[0] if locations else "Remote",
                url="https://boards.greenhouse.io/techcorp/jobs/1",
                description="Build APIs with TypeScript and Node.js. 3-5 years of experience.",
                source=self.name,
                discovered_at=_EPOCH,
                required_skills=("typescript", "node.js"),
                preferred_skills=("react",),
                salary_min=120000,
                salary_max=150000,
                platform="greenhouse",
            ),
            JobCandidate(
                id="mock-2",
                title="Platform Engineer",
                company="CloudScale",
                location="Remote",
                url="https://jobs.lever.co/cloudscale/2",
                description="Kubernetes, Terraform and AWS. 5+ years building infrastructure.",
                source=self.name,
                discovered_at=_EPOCH + timedelta(days=1),
                required_skills=("kubernetes", "terraform", "aws"),
                remote=True,
                platform="lever",
            ),
            JobCandidate(
                id="mock-3",
                title="Frontend Developer",
                company="Pixel Works",
                location="Berlin",
                url="https://example.com/careers/frontend",
                description="React and CSS. 2 years experience.",
                source=self.name,
                discovered_at=_EPOCH + timedelta(days=2),
                required_skills=("react", "css"),
                preferred_skills=("typescript",),
                salary_min=60000,
                platform="generic",
            ),
        ]
        return mock_jobs[:limit]
