from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed

from jobpilot.log import get_logger
from jobpilot.models import CandidateProfile, JobCandidate

from .base import JobSource
from .mock import MockSource
from .remotive import RemotiveSource

log = get_logger(__name__)

__all__ = ["JobSource", "MockSource", "RemotiveSource", "SOURCES", "get_sources", "discover_jobs"]

SOURCES: dict[str, type[JobSource]] = {
    "remotive": RemotiveSource,
    "mock": MockSource,
}


def get_sources(names: list[str], profile: CandidateProfile) -> list[JobSource]:
    sources: list[JobSource] = []
    for name in names:
        cls = SOURCES.get(name.lower().strip())
        if cls is None:
            log.warning("Unknown job source %r — skipped", name)
            continue
        sources.append(cls(profile))
        log.info("Registered source: %s", cls.name)
    if not sources:
        sources.append(MockSource(profile))
        log.info("No usable sources configured — using MockSource")
    return sources


def _search_source(source: JobSource, query: str, locations: list[str], limit: int) -> list[JobCandidate]:
    try:
        results = source.search(query, locations, limit=limit)
        log.info("[%s] returned %d jobs", source.name, len(results))
        return results
    except Exception as exc:
        log.error("[%s] FAILED: %s", source.name, exc)
        return []


def discover_jobs(
    sources: list[JobSource],
    query: str,
    locations: list[str],
    limit: int = 30,
) -> list[JobCandidate]:
    """Search all sources in parallel; results are deduplicated by id and URL.

    A failing source is logged and contributes nothing.
    """
    if not sources:
        return []
    batches: dict[int, list[JobCandidate]] = {}
    with ThreadPoolExecutor(max_workers=len(sources)) as pool:
        futures = {
            pool.submit(_search_source, src, query, locations, limit): i
            for i, src in enumerate(sources)
        }
        for future in as_completed(futures):
            batches[futures[future]] = future.result()

    jobs: list[JobCandidate] = []
    seen_ids: set[str] = set()
    seen_urls: set[str] = set()
    # Source order, not completion order, so discovery is reproducible
    for i in sorted(batches):
        for job in batches[i]:
            url = job.url.rstrip("/").lower()
            if job.id in seen_ids or (url and url in seen_urls):
                continue
            seen_ids.add(job.id)
            if url:
                seen_urls.add(url)
            jobs.append(job)
    log.info("Total unique jobs discovered: %d", len(jobs))
    return jobs
