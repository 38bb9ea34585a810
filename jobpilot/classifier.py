"""Page classification boundary: turn a page snapshot into a PageClassification.

Whatever a classifier returns passes through ``parse_classification``, which
folds unknown or malformed payloads into ``PageType.OTHER`` and never raises.
"""
from __future__ import annotations

import base64
import json
import os
from abc import ABC, abstractmethod
from typing import Any, Callable

from jobpilot import llm
from jobpilot.log import get_logger
from jobpilot.models import FormField, ListedJob, PageClassification, PageSnapshot, PageType
from jobpilot.retry import RetryExecutor

log = get_logger(__name__)

DEFAULT_VISION_MODEL = "meta-llama/llama-4-scout-17b-16e-instruct"
MAX_HTML_CHARS = 15000

_PROMPT = """Analyze this webpage screenshot and the HTML below. Determine:

1. Page type: job listing page, job details page, application form, login page, error page, or other.
2. If job listings: the job titles and their CSS selectors or URLs.
3. If application form: ALL form fields with CSS selector (prefer ids), type
   (text, email, tel, file, select, checkbox, radio, textarea), label, whether
   required, and which profile value fills it (first_name, last_name, full_name,
   email, phone, location, linkedin, website, resume, cover_letter,
   years_experience, current_title, current_company).
4. Selectors of the submit/next/apply buttons.
5. Any login requirement or visible error messages.

HTML (truncated):
{html}

Respond with JSON only:
{{
  "pageType": "job_listing" | "job_details" | "application_form" | "login" | "error" | "other",
  "title": "page title",
  "jobs": [{{"title": "...", "selector": "...", "url": "..."}}],
  "formFields": [{{"selector": "...", "type": "...", "label": "...", "required": true, "profileMapping": "...", "options": []}}],
  "submitButton": "selector",
  "nextButton": "selector if multi-step",
  "loginRequired": false,
  "errors": []
}}"""


class PageClassifier(ABC):
    @abstractmethod
    def classify(self, snapshot: PageSnapshot) -> PageClassification:
        ...


def extract_json(raw: str) -> Any:
    """Pull the outermost JSON object out of a chatty model reply."""
    start = raw.find("{")
    end = raw.rfind("}") + 1
    if start == -1 or end == 0:
        raise ValueError("reply contains no JSON object")
    return json.loads(raw[start:end])


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _pick(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _listed_job(item: Any) -> ListedJob | None:
    if isinstance(item, str) and item.strip():
        return ListedJob(title=item.strip())
    if not isinstance(item, dict):
        return None
    title = _text(item.get("title"))
    if not title:
        return None
    return ListedJob(title=title, selector=_text(item.get("selector")), url=_text(item.get("url")))


def _form_field(item: Any) -> FormField | None:
    if not isinstance(item, dict):
        return None
    selector = _text(item.get("selector"))
    if not selector:
        return None
    return FormField(
        selector=selector,
        type=_text(item.get("type")).lower() or "text",
        label=_text(item.get("label")),
        required=item.get("required") is True,
        profile_mapping=_text(_pick(item, "profileMapping", "profile_mapping")),
        options=tuple(o for o in (_text(x) for x in _as_list(item.get("options"))) if o),
    )


def parse_classification(raw: Any) -> PageClassification:
    """Closed-variant view of an arbitrary classifier payload."""
    if isinstance(raw, PageClassification):
        return raw
    if isinstance(raw, (str, bytes)):
        try:
            raw = extract_json(raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw)
        except ValueError as exc:
            return PageClassification(PageType.OTHER, errors=(f"unparseable classification: {exc}",))
    if not isinstance(raw, dict):
        return PageClassification(PageType.OTHER, errors=("classification is not an object",))

    page_type = PageType.parse(_pick(raw, "pageType", "page_type", "type"))
    login_required = _pick(raw, "loginRequired", "login_required") is True
    if login_required and page_type is PageType.OTHER:
        page_type = PageType.LOGIN

    jobs = tuple(j for j in (_listed_job(x) for x in _as_list(raw.get("jobs"))) if j)
    fields = tuple(
        f for f in (_form_field(x) for x in _as_list(_pick(raw, "formFields", "form_fields"))) if f
    )
    errors = tuple(e for e in (_text(x) for x in _as_list(raw.get("errors"))) if e)

    return PageClassification(
        page_type=page_type,
        title=_text(raw.get("title")),
        jobs=jobs,
        form_fields=fields,
        submit_selector=_text(_pick(raw, "submitButton", "submit_selector")) or None,
        next_selector=_text(_pick(raw, "nextButton", "next_selector")) or None,
        login_required=login_required,
        errors=errors,
    )


def _call_vision(api_key: str, model: str, prompt: str, screenshot: bytes) -> str:
    content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
    if screenshot:
        encoded = base64.b64encode(screenshot).decode("ascii")
        content.insert(0, {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{encoded}"}})
    return llm.chat(api_key, model, content, max_tokens=4096, temperature=0.1)


class LLMPageClassifier(PageClassifier):
    """Vision-model classifier over an OpenAI-compatible chat endpoint (Groq).

    Connection drops, 429s and 5xx replies are retried once; auth and request
    errors propagate, and the navigator treats them as an ``other`` page.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        *,
        max_attempts: int = 2,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.api_key = api_key or os.environ.get("GROQ_API_KEY", "").strip()
        self.model = model or os.environ.get("GROQ_VISION_MODEL", DEFAULT_VISION_MODEL).strip()
        self.max_attempts = max_attempts
        self.sleep = sleep

    def classify(self, snapshot: PageSnapshot) -> PageClassification:
        if not self.api_key:
            log.warning("No GROQ_API_KEY — page at %s classified as other", snapshot.url)
            return PageClassification(PageType.OTHER, errors=("no classifier API key configured",))
        prompt = _PROMPT.format(html=snapshot.html[:MAX_HTML_CHARS])
        executor = RetryExecutor(
            self.max_attempts, 2.0, sleep=self.sleep, retryable=llm.transient_errors()
        )
        reply = executor.execute(
            lambda: _call_vision(self.api_key, self.model, prompt, snapshot.screenshot),
            label="page classification",
        )
        result = parse_classification(reply)
        log.info("Classified %s as %s", snapshot.url, result.page_type.value)
        return result
