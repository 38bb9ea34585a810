"""
Drive a browser from an arbitrary job URL to a submitted application.

NavigationStateMachine walks classified pages (listing -> details -> form)
under a step budget; MultiPageFormRunner then fills and advances form pages
under a page budget until a success page, a dead end, or the budget.
Driver failures leave these classes only as taxonomy errors.
"""
from __future__ import annotations

import re
from typing import Callable, Sequence

from jobpilot.browser import BrowserDriver
from jobpilot.classifier import PageClassifier, parse_classification
from jobpilot.errors import (
    BrowserActionError,
    JobPilotError,
    NavigationError,
    RetryableError,
    SubmissionUncertainError,
    WorkflowCancelled,
)
from jobpilot.log import get_logger
from jobpilot.models import (
    FillResult,
    FormRunResult,
    JobCandidate,
    NavigationOutcome,
    PageClassification,
    PageType,
)
from jobpilot.timing import HumanPacer

log = get_logger(__name__)

APPLY_SELECTORS: list[str] = [
    'button:has-text("Apply")',
    'a:has-text("Apply")',
    '[class*="apply"]',
    '[id*="apply"]',
    'button:has-text("Easy Apply")',
    'button:has-text("Apply Now")',
    'a:has-text("Apply Now")',
    'button[type="submit"]',
]

APPLICATION_PATH_SELECTORS: list[str] = [
    'a:has-text("Apply")',
    'a:has-text("Careers")',
    'a:has-text("Jobs")',
    'a:has-text("View Jobs")',
    'a:has-text("Open Positions")',
    'a[href*="careers"]',
    'a[href*="jobs"]',
    'a[href*="apply"]',
]

SUBMIT_FALLBACK_SELECTORS: list[str] = [
    'button:has-text("Submit")',
    'button[type="submit"]',
    'input[type="submit"]',
]

SUCCESS_PHRASES: list[str] = [
    "application submitted",
    "thank you for applying",
    "application received",
    "successfully submitted",
    "we have received your application",
    "application complete",
    "you have applied",
    "thanks for applying",
]

DEFAULT_MAX_STEPS = 10
DEFAULT_MAX_PAGES = 20


def _normalize_title(s: str) -> str:
    s = re.sub(r"[^\w\s]", "", (s or "").lower())
    return re.sub(r"\s+", " ", s).strip()


def titles_match(a: str, b: str) -> bool:
    """Exact, then containment either way, then word overlap >= half the smaller title."""
    t1, t2 = _normalize_title(a), _normalize_title(b)
    if not t1 or not t2:
        return False
    if t1 == t2 or t1 in t2 or t2 in t1:
        return True
    words1, words2 = set(t1.split()), set(t2.split())
    overlap = {w for w in words1 & words2 if len(w) > 2}
    return len(overlap) >= min(len(words1), len(words2)) / 2


def looks_like_success(text: str) -> bool:
    low = re.sub(r"\s+", " ", (text or "").lower())
    return any(phrase in low for phrase in SUCCESS_PHRASES)


class _PageWorker:
    def __init__(self, driver: BrowserDriver, classifier: PageClassifier, pacer: HumanPacer) -> None:
        self.driver = driver
        self.classifier = classifier
        self.pacer = pacer

    def _classify(self) -> PageClassification:
        try:
            snapshot = self.driver.snapshot()
        except JobPilotError:
            raise
        except Exception as e:
            raise BrowserActionError(f"Could not capture page: {e}") from e
        try:
            return parse_classification(self.classifier.classify(snapshot))
        except Exception as e:
            log.warning("Classifier failed on %s (%s) — treating as other", snapshot.url, e)
            return PageClassification(PageType.OTHER, errors=(f"classifier failed: {e}",))

    def _click(self, selectors: Sequence[str]) -> bool:
        candidates = [s for s in dict.fromkeys(selectors) if s]
        if not candidates:
            return False
        try:
            return bool(self.driver.find_and_click(candidates))
        except JobPilotError:
            raise
        except Exception as e:
            raise BrowserActionError(f"Click failed: {e}", {"selectors": candidates}) from e

    def _visible_text(self) -> str:
        try:
            return self.driver.get_visible_text() or ""
        except JobPilotError:
            raise
        except Exception as e:
            raise BrowserActionError(f"Could not read page text: {e}") from e

    def _capture(self) -> bytes | None:
        """Best-effort screenshot for the audit trail."""
        try:
            return self.driver.screenshot()
        except Exception as e:
            log.debug("Screenshot unavailable: %s", e)
            return None


class NavigationStateMachine(_PageWorker):
    def __init__(
        self,
        driver: BrowserDriver,
        classifier: PageClassifier,
        pacer: HumanPacer,
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
    ) -> None:
        super().__init__(driver, classifier, pacer)
        if max_steps < 1:
            raise ValueError("max_steps must be >= 1")
        self.max_steps = max_steps

    def _fail(
        self, page: PageType, error: str, classification: PageClassification | None, steps: int
    ) -> NavigationOutcome:
        log.info("Navigation stopped on %s after %d step(s): %s", page.value, steps, error)
        return NavigationOutcome(
            success=False,
            current_page=page,
            classification=classification,
            error=error,
            screenshot=self._capture(),
            steps=steps,
        )

    def _open(self, url: str) -> None:
        self.pacer.pause()
        try:
            self.driver.navigate(url)
        except JobPilotError:
            raise
        except Exception as e:
            raise NavigationError(f"Could not load {url}: {e}", {"url": url}) from e

    def _open_listed_job(self, title: str, classification: PageClassification) -> bool:
        for listed in classification.jobs:
            if not titles_match(listed.title, title):
                continue
            if listed.selector and self._click([listed.selector]):
                return True
            if listed.url:
                self._open(listed.url)
                return True
        quoted = title[:30].replace('"', '\\"')
        return self._click([f'a:has-text("{quoted}")'])

    def navigate(self, job: JobCandidate) -> NavigationOutcome:
        """Walk from ``job.url`` to an application form, or fail with a reason."""
        self._open(job.url)
        classification: PageClassification | None = None

        for step in range(1, self.max_steps + 1):
            classification = self._classify()
            page = classification.page_type
            log.debug("Step %d: %s (%s)", step, page.value, job.title)

            if page is PageType.APPLICATION_FORM:
                return NavigationOutcome(True, page, classification, steps=step)
            if page is PageType.LOGIN:
                return self._fail(page, "manual auth required", classification, step)
            if page is PageType.ERROR:
                detail = "; ".join(classification.errors) or "error page"
                return self._fail(page, f"error page: {detail}", classification, step)

            self.pacer.pause()
            if page is PageType.JOB_DETAILS:
                targets = [classification.submit_selector, classification.next_selector, *APPLY_SELECTORS]
                if not self._click([t for t in targets if t]):
                    return self._fail(page, "could not find apply action", classification, step)
            elif page is PageType.JOB_LISTING:
                if not self._open_listed_job(job.title, classification):
                    return self._fail(page, "job not found in listing", classification, step)
            elif not self._click(APPLICATION_PATH_SELECTORS):
                return self._fail(page, "no application path found", classification, step)

        last = classification.page_type if classification else PageType.OTHER
        return self._fail(last, "navigation exhausted", classification, self.max_steps)


FillCallback = Callable[[PageClassification], "FillResult | None"]


class MultiPageFormRunner(_PageWorker):
    """Fill -> next/submit -> reclassify, bounded by ``max_pages`` form pages.

    Once a submit has been clicked, any transient failure is reported as
    ``SubmissionUncertainError`` so the attempt is never replayed.
    """

    def __init__(
        self,
        driver: BrowserDriver,
        classifier: PageClassifier,
        pacer: HumanPacer,
        *,
        max_pages: int = DEFAULT_MAX_PAGES,
    ) -> None:
        super().__init__(driver, classifier, pacer)
        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        self.max_pages = max_pages

    def _fill(self, fill: FillCallback, classification: PageClassification) -> FillResult:
        try:
            return fill(classification) or FillResult()
        except JobPilotError:
            raise
        except Exception as e:
            raise BrowserActionError(f"Filling form failed: {e}") from e

    def run(self, fill: FillCallback, first: PageClassification | None = None) -> FormRunResult:
        result = FormRunResult(success=False, total_pages=0)
        submitted = False
        current = first
        try:
            while True:
                if current is None:
                    current = self._classify()
                if current.page_type is not PageType.APPLICATION_FORM:
                    if looks_like_success(self._visible_text()):
                        result.success = True
                        return result
                    result.error = f"unexpected page type: {current.page_type.value}"
                    return result
                if result.total_pages >= self.max_pages:
                    result.error = "form page limit exceeded"
                    return result

                result.total_pages += 1
                log.debug("Form page %d", result.total_pages)
                filled = self._fill(fill, current)
                result.fields_filled += filled.fields_filled
                result.fields_skipped += filled.fields_skipped
                result.errors.extend(filled.errors)

                self.pacer.pause()
                if current.next_selector and self._click([current.next_selector]):
                    current = None
                    continue
                submit = [current.submit_selector] if current.submit_selector else SUBMIT_FALLBACK_SELECTORS
                if self._click(submit):
                    submitted = True
                    self.pacer.pause()
                    if looks_like_success(self._visible_text()):
                        result.success = True
                        return result
                    current = None
                    continue
                result.error = "no actionable button found"
                return result
        except RetryableError as e:
            if submitted:
                raise SubmissionUncertainError(
                    f"Lost track of the form after submitting: {e.message}", e.context
                ) from e
            raise
        except WorkflowCancelled as e:
            if submitted:
                raise SubmissionUncertainError("Cancelled after submitting; outcome unknown") from e
            raise
