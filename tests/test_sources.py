"""Tests for job sources and parallel discovery."""
from __future__ import annotations

import pytest
import requests

from conftest import make_job
from jobpilot.sources import MockSource, RemotiveSource, discover_jobs, get_sources
from jobpilot.sources import remotive
from jobpilot.sources.base import JobSource
from jobpilot.sources.remotive import parse_salary


class StaticSource(JobSource):
    name = "static"

    def __init__(self, profile, jobs):
        super().__init__(profile)
        self.jobs = jobs

    def search(self, query, locations, limit=20):
        return self.jobs[:limit]


class BrokenSource(JobSource):
    name = "broken"

    def search(self, query, locations, limit=20):
        raise ConnectionError("board is down")


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        return self.payload


def test_mock_source_is_deterministic(profile):
    first = MockSource(profile).search("", ["Berlin"])
    second = MockSource(profile).search("", ["Berlin"])
    assert first == second
    assert [j.id for j in first] == ["mock-1", "mock-2", "mock-3"]
    assert first[0].title == "Software Engineer"
    assert first[0].location == "Berlin"
    assert len(MockSource(profile).search("", [], limit=1)) == 1


def test_get_sources(profile):
    sources = get_sources(["Remotive", "monster"], profile)
    assert [type(s) for s in sources] == [RemotiveSource]
    fallback = get_sources(["monster"], profile)
    assert [type(s) for s in fallback] == [MockSource]


def test_discover_dedupes_by_id_and_url(profile):
    a = make_job("a")
    same_url = make_job("a-mirror", url=a.url + "/")
    b = make_job("b")
    sources = [
        StaticSource(profile, [a, b]),
        BrokenSource(profile),
        StaticSource(profile, [make_job("a", title="dupe"), same_url, make_job("c")]),
    ]
    jobs = discover_jobs(sources, "engineer", [], limit=10)
    assert [j.id for j in jobs] == ["a", "b", "c"]
    assert jobs[0].title == "Software Engineer"


def test_discover_with_no_sources():
    assert discover_jobs([], "x", []) == []


@pytest.mark.parametrize(
    "text, expected",
    [
        ("$90k - $120k", (90000.0, 120000.0)),
        ("100,000 USD", (100000.0, 100000.0)),
        ("Competitive", (None, None)),
        ("", (None, None)),
    ],
)
def test_parse_salary(text, expected):
    assert parse_salary(text) == expected


def test_remotive_maps_api_payload(monkeypatch, profile):
    calls = []

    def fake_get(url, params=None, timeout=None):
        calls.append(params)
        return FakeResponse({"jobs": [{
            "id": 1234,
            "title": "Backend Engineer",
            "company_name": "Initech",
            "url": "https://remotive.com/remote-jobs/software-dev/backend-engineer-1234",
            "candidate_required_location": "Europe",
            "description": "<p>Go and PostgreSQL, 4+ years</p>",
            "publication_date": "2024-05-20T10:00:00",
            "tags": ["go", "postgresql", 7],
            "salary": "$100k-$130k",
        }]})

    monkeypatch.setattr(remotive.requests, "get", fake_get)
    jobs = RemotiveSource(profile).search("Senior Backend Engineer", [], limit=5)

    assert len(jobs) == 1
    job = jobs[0]
    assert job.id.startswith("remotive-") and len(job.id) == len("remotive-") + 12
    assert job.required_skills == ("go", "postgresql")
    assert (job.salary_min, job.salary_max) == (100000.0, 130000.0)
    assert job.remote is True
    assert job.platform == "aggregator"
    assert job.discovered_at.tzinfo is not None
    assert calls[0]["search"] == "backend"


def test_remotive_http_error_is_retried_then_raised(monkeypatch, profile):
    monkeypatch.setattr("jobpilot.retry.time.sleep", lambda s: None)
    attempts = []

    def failing_get(url, params=None, timeout=None):
        attempts.append(1)
        return FakeResponse({}, status=503)

    monkeypatch.setattr(remotive.requests, "get", failing_get)
    with pytest.raises(requests.HTTPError):
        RemotiveSource(profile).search("python", [], limit=5)
    assert len(attempts) == 2


def test_failing_remotive_does_not_break_discovery(monkeypatch, profile):
    monkeypatch.setattr("jobpilot.retry.time.sleep", lambda s: None)
    monkeypatch.setattr(remotive.requests, "get",
                        lambda *a, **k: FakeResponse({}, status=500))
    jobs = discover_jobs([RemotiveSource(profile), MockSource(profile)], "python", [])
    assert [j.source for j in jobs] == ["mock"] * 3
